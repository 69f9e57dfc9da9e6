"""Command-line interface for gql-pyclient."""

import asyncio
import json
import logging
from pathlib import Path

import click
from graphql import GraphQLSyntaxError, parse

from .core.client import GraphQLClient
from .core.errors import GraphQLClientError
from .logging_config import configure_logging


def load_json(path: str | None) -> dict:
    """Load a JSON object from a file, or an empty dict."""
    if not path:
        return {}
    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise click.BadParameter(f"{path} must contain a JSON object")
    return data


def parse_headers(headers: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated "Name: value" options."""
    parsed = {}
    for header in headers:
        name, sep, value = header.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"Invalid header {header!r}, expected 'Name: value'")
        parsed[name.strip()] = value.strip()
    return parsed


def query_options(f):
    """Options shared by the compile and run commands."""
    f = click.option(
        "--verbose",
        "-v",
        is_flag=True,
        help="Enable debug logging.",
    )(f)
    f = click.option(
        "--declare",
        is_flag=True,
        help="Declare variable types automatically from the variables.",
    )(f)
    f = click.option(
        "--mutation",
        is_flag=True,
        help="Treat a body without keyword as a mutation.",
    )(f)
    f = click.option(
        "--variables",
        "-V",
        type=click.Path(exists=True, dir_okay=False),
        help="JSON file with the variables.",
    )(f)
    f = click.option(
        "--fragments",
        "-f",
        type=click.Path(exists=True, dir_okay=False),
        help="JSON file with a (nested) mapping of fragments.",
    )(f)
    f = click.argument("query_file", type=click.Path(exists=True, dir_okay=False))(f)
    return f


@click.group()
@click.version_option()
def main():
    """GraphQL query compiler and request batcher.

    Compile queries with fragments and autodeclared variables, or send them.
    """
    pass


@main.command()
@query_options
@click.option(
    "--validate",
    is_flag=True,
    help="Check that the compiled document is valid GraphQL syntax.",
)
def compile(query_file: str, fragments: str | None, variables: str | None,
            mutation: bool, declare: bool, verbose: bool, validate: bool):
    """Compile a query file and print the resulting document.

    Examples:

        gql-pyclient compile post.graphql --fragments fragments.json

        gql-pyclient compile post.graphql -V vars.json --declare --validate
    """
    if verbose:
        configure_logging(level=logging.DEBUG)

    try:
        client = GraphQLClient(fragments=load_json(fragments))
        body = Path(query_file).read_text()
        prepared = client.mutate(body, declare=declare) if mutation else client.query(body, declare=declare)
        document = client.build_query(prepared.template, load_json(variables))
    except GraphQLClientError as e:
        raise click.ClickException(str(e))

    if validate:
        try:
            parse(document)
        except GraphQLSyntaxError as e:
            raise click.ClickException(f"Invalid document: {e.message}")

    click.echo(document)


@main.command()
@query_options
@click.option(
    "--url",
    "-u",
    required=True,
    help="GraphQL endpoint URL.",
)
@click.option(
    "--method",
    "-m",
    type=click.Choice(["GET", "POST"], case_sensitive=False),
    default="POST",
    help="HTTP method (default: POST).",
)
@click.option(
    "--header",
    "-H",
    multiple=True,
    help="Extra header as 'Name: value'. Repeatable.",
)
def run(query_file: str, fragments: str | None, variables: str | None,
        mutation: bool, declare: bool, verbose: bool, url: str, method: str,
        header: tuple[str, ...]):
    """Send a query file to an endpoint and print the data as JSON.

    Examples:

        gql-pyclient run post.graphql --url https://example.com/graphql -V vars.json

        gql-pyclient run me.graphql -u https://example.com/graphql -H "Authorization: Bearer x"
    """
    if verbose:
        configure_logging(level=logging.DEBUG)

    body = Path(query_file).read_text()

    async def send() -> dict:
        async with GraphQLClient(
            url,
            method=method,
            headers=parse_headers(header),
            fragments=load_json(fragments),
        ) as client:
            prepared = client.mutate(body, declare=declare) if mutation else client.query(body, declare=declare)
            return await prepared(load_json(variables))

    try:
        data = asyncio.run(send())
    except GraphQLClientError as e:
        raise click.ClickException(str(e))

    click.echo(json.dumps(data, indent=2))


if __name__ == "__main__":
    main()
