"""Tests for merging operations into one request."""

import asyncio

import pytest
from graphql import build_schema, parse, validate

from gql_pyclient.core.compiler import QueryCompiler, QueryTemplate
from gql_pyclient.core.errors import (
    EmptyCommitError,
    GraphQLError,
    MergeError,
    MissingVariableError,
)
from gql_pyclient.core.fragments import FragmentRegistry
from gql_pyclient.core.merge import (
    BatchMerger,
    alias_top_level_fields,
    random_alias,
    rename_spreads,
)


FETCH_POST = QueryTemplate.from_body("""{
  post(id: $id) {
    id
    title
    text
  }
}""")

FETCH_COMMENTS = QueryTemplate.from_body("""{
  commentsOfPost: comments(postId: $postId) {
    comment
    owner {
      name
    }
  }
}""")

POST = {"id": 123, "title": "hi", "text": "hello"}
COMMENTS = [{"comment": "hi", "owner": {"name": "bob"}}]


class RecordingDispatch:
    """Records dispatched documents and answers with canned data."""

    def __init__(self, responses=None, error=None):
        self.calls = []
        self.responses = list(responses or [])
        self.error = error

    async def __call__(self, document, variables):
        self.calls.append((document, variables))
        if self.error is not None:
            raise self.error
        return self.responses.pop(0) if self.responses else {}


def aliases(*codes):
    return iter(codes).__next__


@pytest.fixture
def registry():
    return FragmentRegistry({"user": "on User {name}"})


def make_merger(registry, dispatch, *codes):
    return BatchMerger(QueryCompiler(registry), dispatch, aliases(*codes) if codes else None)


# =============================================================================
# Tests: Aliasing
# =============================================================================


class TestAliasTopLevelFields:
    """Tests for aliasing top-level fields."""

    def test_unaliased_field(self):
        selection, keys = alias_top_level_fields("post(id: $x) { id }", "merge1234")
        assert selection == "merge1234_post:post(id: $x) { id }"
        assert keys == ["post"]

    def test_aliased_field_keeps_separator(self):
        selection, keys = alias_top_level_fields("mine: posts(first: 2) { id }", "merge1")
        assert selection == "merge1_mine: posts(first: 2) { id }"
        assert keys == ["mine"]

    def test_multiple_fields(self):
        selection, keys = alias_top_level_fields("me { id }\n  viewer { login }", "merge5")
        assert selection == "merge5_me:me { id }\n  merge5_viewer:viewer { login }"
        assert keys == ["me", "viewer"]

    def test_directives_and_strings(self):
        selection, keys = alias_top_level_fields(
            'search(q: "a b") @include(if: $on) { id }', "merge9"
        )
        assert selection == 'merge9_search:search(q: "a b") @include(if: $on) { id }'
        assert keys == ["search"]

    def test_comments_are_skipped(self):
        selection, keys = alias_top_level_fields(
            "# fetch the post\npost(id: $x) { id } # trailing note", "merge1"
        )
        assert selection == "# fetch the post\nmerge1_post:post(id: $x) { id } # trailing note"
        assert keys == ["post"]

    def test_rename_spreads(self):
        text = "{ ...post_fields ... post_title ...other }"
        renamed = {"post_fields": "merge1_post_fields", "post_title": "merge1_post_title"}
        assert rename_spreads(text, renamed) == (
            "{ ...merge1_post_fields ... merge1_post_title ...other }"
        )

    def test_top_level_spread_fails(self):
        with pytest.raises(MergeError):
            alias_top_level_fields("...user", "merge1")

    def test_random_alias_is_four_digits(self):
        for _ in range(20):
            code = random_alias()
            assert len(code) == 4
            assert code.isdigit()


# =============================================================================
# Tests: Merge and commit
# =============================================================================


class TestMerge:
    """Tests for merging without committing."""

    @pytest.mark.asyncio
    async def test_merge_sends_nothing(self, registry):
        dispatch = RecordingDispatch()
        merger = make_merger(registry, dispatch, "1234")

        future = merger.merge("buildPage", FETCH_POST, {"id": 123})

        assert dispatch.calls == []
        assert merger.pending("buildPage") == 1
        assert not future.done()

    @pytest.mark.asyncio
    async def test_entries_are_aliased(self, registry):
        merger = make_merger(registry, RecordingDispatch(), "1234")
        merger.merge("buildPage", FETCH_POST, {"id": 123})

        entry = merger._batches["buildPage"][0]
        assert entry.alias == "merge1234"
        assert entry.declarations == ["$merge1234__id: ID!"]
        assert entry.variables == {"merge1234__id": 123}
        assert entry.fields == [("merge1234_post", "post")]

    @pytest.mark.asyncio
    async def test_explicit_signature_is_aliased(self, registry):
        merger = make_merger(registry, RecordingDispatch(), "0042")
        template = QueryTemplate.from_body(
            "($email: String!, $password: String!) { auth(email: $email, password: $password) { token } }"
        )
        merger.merge("login", template, {"email": "a@b.c", "password": "x"})

        entry = merger._batches["login"][0]
        assert entry.declarations == [
            "$merge0042__email: String!",
            "$merge0042__password: String!",
        ]

    @pytest.mark.asyncio
    async def test_modifier_keys(self, registry):
        merger = make_merger(registry, RecordingDispatch(), "0001")
        template = QueryTemplate.from_body("{ post(id: $id) { id } }")
        merger.merge("k", template, {"id!Int": 5})

        entry = merger._batches["k"][0]
        assert entry.declarations == ["$merge0001__id: Int!"]
        assert entry.variables == {"merge0001__id": 5}


class TestCommit:
    """Tests for committing merged operations."""

    @pytest.mark.asyncio
    async def test_single_entry(self, registry):
        dispatch = RecordingDispatch([{"merge1234_post": POST}])
        merger = make_merger(registry, dispatch, "1234")

        future = merger.merge("buildPage", FETCH_POST, {"id": 123})
        aggregate = await merger.commit("buildPage")

        document, variables = dispatch.calls[0]
        assert document == (
            "query ($merge1234__id: ID!) {\n"
            "merge1234_post:post(id: $merge1234__id) {\n    id\n    title\n    text\n  }\n }"
        )
        assert variables == {"merge1234__id": 123}
        assert await future == {"post": POST}
        assert aggregate == {"post": [POST]}

    @pytest.mark.asyncio
    async def test_multiple_entries_one_request(self, registry):
        dispatch = RecordingDispatch([{
            "merge1234_post": POST,
            "merge4321_commentsOfPost": COMMENTS,
        }])
        merger = make_merger(registry, dispatch, "1234", "4321")

        post = merger.merge("buildPage", FETCH_POST, {"id": 123})
        comments = merger.merge("buildPage", FETCH_COMMENTS, {"postId": 123})
        aggregate = await merger.commit("buildPage")

        assert len(dispatch.calls) == 1
        document, variables = dispatch.calls[0]
        assert document == (
            "query ($merge1234__id: ID!, $merge4321__postId: ID!) {\n"
            "merge1234_post:post(id: $merge1234__id) {\n    id\n    title\n    text\n  }\n"
            "merge4321_commentsOfPost: comments(postId: $merge4321__postId) {\n"
            "    comment\n    owner {\n      name\n    }\n  }\n"
            " }"
        )
        assert variables == {"merge1234__id": 123, "merge4321__postId": 123}
        assert await post == {"post": POST}
        assert await comments == {"commentsOfPost": COMMENTS}
        assert aggregate == {"post": [POST], "commentsOfPost": [COMMENTS]}
        parse(document)

    @pytest.mark.asyncio
    async def test_same_field_aggregated(self, registry):
        other = {"id": 7, "title": "yo", "text": "there"}
        dispatch = RecordingDispatch([{"merge0001_post": POST, "merge0002_post": other}])
        merger = make_merger(registry, dispatch, "0001", "0002")

        first = merger.merge("page", FETCH_POST, {"id": 123})
        second = merger.merge("page", FETCH_POST, {"id": 7})
        aggregate = await merger.commit("page")

        assert aggregate == {"post": [POST, other]}
        assert await first == {"post": POST}
        assert await second == {"post": other}
        assert dispatch.calls[0][1] == {"merge0001__id": 123, "merge0002__id": 7}

    @pytest.mark.asyncio
    async def test_fragments_appended_once(self, registry):
        dispatch = RecordingDispatch()
        merger = make_merger(registry, dispatch, "0001", "0002")
        template = QueryTemplate.from_body("{ post(id: $id) { author { ...user } } }")

        merger.merge("page", template, {"id": 1})
        merger.merge("page", template, {"id": 2})
        await merger.commit("page")

        document = dispatch.calls[0][0]
        assert document.count("fragment user on User {name}") == 1
        assert document.endswith(" }\n\nfragment user on User {name}")
        assert "author { ... user }" in document

    @pytest.mark.asyncio
    async def test_mutations_sent_separately(self, registry):
        dispatch = RecordingDispatch([{"merge0001_post": POST}, {"merge0002_logout": True}])
        merger = make_merger(registry, dispatch, "0001", "0002")

        post = merger.merge("page", FETCH_POST, {"id": 123})
        logout = merger.merge("page", QueryTemplate.from_body("{ logout }", "mutation"), {})
        aggregate = await merger.commit("page")

        assert [call[0].split(" ")[0] for call in dispatch.calls] == ["query", "mutation"]
        assert dispatch.calls[1][0] == "mutation {\nmerge0002_logout:logout\n }"
        assert await post == {"post": POST}
        assert await logout == {"logout": True}
        assert aggregate == {"post": [POST], "logout": [True]}

    @pytest.mark.asyncio
    async def test_empty_commit(self, registry):
        merger = make_merger(registry, RecordingDispatch())
        with pytest.raises(EmptyCommitError, match="buildPage"):
            await merger.commit("buildPage")

    @pytest.mark.asyncio
    async def test_commit_drains_the_key(self, registry):
        dispatch = RecordingDispatch()
        merger = make_merger(registry, dispatch, "0001", "0002")

        merger.merge("page", FETCH_POST, {"id": 1})
        await merger.commit("page")
        with pytest.raises(EmptyCommitError):
            await merger.commit("page")

        merger.merge("page", FETCH_POST, {"id": 2})
        await merger.commit("page")
        assert len(dispatch.calls) == 2
        assert dispatch.calls[1][1] == {"merge0002__id": 2}

    @pytest.mark.asyncio
    async def test_missing_variable_fails_at_commit(self, registry):
        dispatch = RecordingDispatch()
        merger = make_merger(registry, dispatch, "0001")

        future = merger.merge("page", FETCH_POST, {})
        with pytest.raises(MissingVariableError, match=r"\$id") as exc_info:
            await merger.commit("page")

        assert exc_info.value.name == "id"
        assert dispatch.calls == []
        with pytest.raises(MissingVariableError):
            await future
        assert merger.pending("page") == 0

    @pytest.mark.asyncio
    async def test_failed_request_rejects_every_entry(self, registry):
        error = GraphQLError("GraphQL errors: boom", [{"message": "boom"}])
        merger = make_merger(registry, RecordingDispatch(error=error), "0001", "0002")

        post = merger.merge("page", FETCH_POST, {"id": 1})
        comments = merger.merge("page", FETCH_COMMENTS, {"postId": 1})
        with pytest.raises(GraphQLError):
            await merger.commit("page")

        for future in (post, comments):
            with pytest.raises(GraphQLError):
                await future
        assert merger.pending("page") == 0

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, registry):
        dispatch = RecordingDispatch()
        merger = make_merger(registry, dispatch, "0001", "0002")

        merger.merge("a", FETCH_POST, {"id": 1})
        merger.merge("b", FETCH_POST, {"id": 2})
        await merger.commit("a")

        assert merger.pending("b") == 1
        assert len(dispatch.calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_commit_cancels_entries(self, registry):
        started = asyncio.Event()

        async def hang(document, variables):
            started.set()
            await asyncio.sleep(10)

        merger = make_merger(registry, hang, "0001")
        future = merger.merge("page", FETCH_POST, {"id": 1})
        task = asyncio.create_task(merger.commit("page"))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert future.cancelled()


# =============================================================================
# Tests: Fragments with variables
# =============================================================================


POST_SCHEMA = build_schema("""
    type Query {
      post(id: ID!): Post
    }

    type Post {
      id: ID!
      title: String
      comments(first: Int!): [Comment]
    }

    type Comment {
      id: ID!
    }
""")

POST_FRAGMENTS = {
    "post": {
        "fields": "on Post {id ...post.comments}",
        "comments": "on Post {comments(first: $first) {id}}",
        "title": "on Post {title}",
    },
}

FETCH_POST_FRAGMENTS = QueryTemplate.from_body("{ post(id: $id) { ...post.fields ...post.title } }")


class TestFragmentVariables:
    """Tests for merged entries whose fragments use variables."""

    @pytest.fixture
    def post_registry(self):
        return FragmentRegistry(POST_FRAGMENTS)

    @pytest.mark.asyncio
    async def test_fragments_are_copied_per_entry(self, post_registry):
        dispatch = RecordingDispatch()
        merger = make_merger(post_registry, dispatch, "0001", "0002")

        merger.merge("page", FETCH_POST_FRAGMENTS, {"id": 1, "first": 5})
        merger.merge("page", FETCH_POST_FRAGMENTS, {"id": 2, "first": 6})
        await merger.commit("page")

        document, variables = dispatch.calls[0]
        assert document == (
            "query ($merge0001__id: ID!, $merge0001__first: Int!, "
            "$merge0002__id: ID!, $merge0002__first: Int!) {\n"
            "merge0001_post:post(id: $merge0001__id) { ... merge0001_post_fields ... post_title }\n"
            "merge0002_post:post(id: $merge0002__id) { ... merge0002_post_fields ... post_title }\n }"
            "\n\nfragment merge0001_post_comments on Post {comments(first: $merge0001__first) {id}}"
            "\n\nfragment merge0001_post_fields on Post {id ...merge0001_post_comments}"
            "\n\nfragment post_title on Post {title}"
            "\n\nfragment merge0002_post_comments on Post {comments(first: $merge0002__first) {id}}"
            "\n\nfragment merge0002_post_fields on Post {id ...merge0002_post_comments}"
        )
        assert variables == {
            "merge0001__id": 1,
            "merge0001__first": 5,
            "merge0002__id": 2,
            "merge0002__first": 6,
        }
        assert validate(POST_SCHEMA, parse(document)) == []

    @pytest.mark.asyncio
    async def test_fragment_variables_are_declared(self, post_registry):
        merger = make_merger(post_registry, RecordingDispatch(), "0001")
        merger.merge("page", FETCH_POST_FRAGMENTS, {"id": 1, "first": 5})

        entry = merger._batches["page"][0]
        assert entry.referenced == ["id", "first"]
        assert entry.declarations == ["$merge0001__id: ID!", "$merge0001__first: Int!"]
        assert list(entry.fragments) == [
            "merge0001_post_comments",
            "merge0001_post_fields",
            "post_title",
        ]

    @pytest.mark.asyncio
    async def test_missing_fragment_variable_fails_at_commit(self, post_registry):
        dispatch = RecordingDispatch()
        merger = make_merger(post_registry, dispatch, "0001")

        future = merger.merge("page", FETCH_POST_FRAGMENTS, {"id": 1})
        with pytest.raises(MissingVariableError, match=r"\$first") as exc_info:
            await merger.commit("page")

        assert exc_info.value.name == "first"
        assert dispatch.calls == []
        with pytest.raises(MissingVariableError):
            await future
