"""CLI interface for the reading tutor"""

import asyncio
import json
import logging
from typing import TYPE_CHECKING

import typer

if TYPE_CHECKING:
    from reading_tutor.chat import TurnRequest

logger = logging.getLogger("reading_tutor")
app = typer.Typer()


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log workflow decisions"
    ),
) -> None:
    """
    Reading tutor: ask questions about your documents.
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def create_default_config_file() -> None:
    """
    Create default configuration files (config.toml and
    appchat.toml), or reset them to default values.
    """
    from reading_tutor.config.config import (
        create_default_config_file as create_config,
    )
    from reading_tutor.config.appchat import (
        create_default_config_file as create_chat_config,
    )

    try:
        create_config()
        create_chat_config()
    except Exception as e:
        logger.error(str(e))
        raise typer.Exit(1)


@app.command()
def config_info() -> None:
    """
    Returns information on the active configuration.
    """
    from reading_tutor.config.config import ConfigSettings

    try:
        settings = ConfigSettings()
        print(settings.model_dump_json(indent=2))
    except Exception as e:
        logger.error(str(e))
        raise typer.Exit(1)


def _make_request(
    message: str,
    user_id: str,
    mode: str,
    article_ids: list[str] | None,
    collection_id: str | None,
    topic: str | None,
    intent: str | None,
) -> 'TurnRequest':
    from reading_tutor.chat import TurnRequest

    return TurnRequest.model_validate(
        {
            "userMessage": message,
            "userId": user_id,
            "mode": mode,
            "articleIds": article_ids or [],
            "collectionId": collection_id,
            "currentTopic": topic,
            "uiIntent": intent,
        }
    )


async def _print_turn(request: 'TurnRequest', raw_sse: bool) -> None:
    from reading_tutor.chat import run_turn, sse_stream
    from reading_tutor.workflows.langchain.base import WorkflowContext

    context = WorkflowContext.from_default_config()
    if raw_sse:
        async for record in sse_stream(request, context):
            print(record, end="", flush=True)
        return

    async for event in run_turn(request, context):
        match event.type:
            case "delta":
                print(event.data.get("text", ""), end="", flush=True)
            case "step":
                logger.info(f"step: {event.data.get('name')}")
            case "final":
                print()
                print(
                    json.dumps(
                        {
                            k: v
                            for k, v in event.data.items()
                            if k != "traceId"
                        },
                        ensure_ascii=False,
                        indent=2,
                    )
                )
            case "error":
                logger.error(
                    f"{event.data.get('message')}: "
                    f"{event.data.get('detail', '')}"
                )
            case _:
                pass


def _run(
    message: str,
    user_id: str,
    mode: str,
    article_ids: list[str] | None,
    collection_id: str | None,
    topic: str | None,
    intent: str | None,
    raw_sse: bool,
) -> None:
    try:
        request = _make_request(
            message, user_id, mode, article_ids, collection_id, topic,
            intent,
        )
        asyncio.run(_print_turn(request, raw_sse))
    except Exception as e:
        logger.error(str(e))
        raise typer.Exit(1)


@app.command()
def ask(
    message: str = typer.Argument(..., help="Message to the tutor"),
    user_id: str = typer.Option(
        ..., "--user-id", "-u", help="Owner of the documents (UUID)"
    ),
    mode: str = typer.Option(
        "tutor", "--mode", "-m", help="qa, tutor, or copilot"
    ),
    article_ids: list[str] = typer.Option(
        None, "--article-id", "-a", help="Restrict to a document"
    ),
    collection_id: str = typer.Option(
        None, "--collection-id", "-c", help="Restrict to a collection"
    ),
    topic: str = typer.Option(None, "--topic", help="Current topic"),
    intent: str = typer.Option(
        None, "--intent", "-i", help="Shape of the explanation"
    ),
) -> None:
    """
    Carries out a tutoring turn, streaming the answer to the console.
    """
    _run(
        message, user_id, mode, article_ids, collection_id, topic,
        intent, raw_sse=False,
    )


@app.command()
def sse(
    message: str = typer.Argument(..., help="Message to the tutor"),
    user_id: str = typer.Option(
        ..., "--user-id", "-u", help="Owner of the documents (UUID)"
    ),
    mode: str = typer.Option(
        "tutor", "--mode", "-m", help="qa, tutor, or copilot"
    ),
    article_ids: list[str] = typer.Option(
        None, "--article-id", "-a", help="Restrict to a document"
    ),
    collection_id: str = typer.Option(
        None, "--collection-id", "-c", help="Restrict to a collection"
    ),
    topic: str = typer.Option(None, "--topic", help="Current topic"),
    intent: str = typer.Option(
        None, "--intent", "-i", help="Shape of the explanation"
    ),
) -> None:
    """
    Carries out a tutoring turn, printing the Server-Sent-Events
    records of the stream.
    """
    _run(
        message, user_id, mode, article_ids, collection_id, topic,
        intent, raw_sse=True,
    )


if __name__ == "__main__":
    app()
