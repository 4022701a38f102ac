"""
Command-line entry point: stream a chat, list models, inspect capabilities.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys

import typer

from multichat.cancellation import CancellationToken
from multichat.chat.logging_utils import configure_logging
from multichat.chat.models import ChatOptions, Message
from multichat.chat.token_counter import estimate_tokens, limit_messages_by_tokens
from multichat.clients.llm_client import ChatClient
from multichat.clients.model_capabilities import get_model_capabilities
from multichat.config import Configuration
from multichat.errors import CancellationError, ConfigurationError, TransportError

app = typer.Typer(add_completion=False, help="Multi-provider streaming chat client.")


def _load_configuration(config_path: str | None) -> Configuration:
    try:
        config = Configuration(config_path)
    except ConfigurationError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from e

    logging_config = config.get_logging_config()
    logging.basicConfig(
        level=logging.INFO,
        format=logging_config.get("format", "%(asctime)s - %(levelname)s - %(message)s"),
    )
    configure_logging(logging_config)
    return config


async def _run_chat(config: Configuration, provider: str, options: ChatOptions) -> None:
    token = options.cancellation

    # Ctrl-C aborts the request cooperatively instead of killing the loop
    if token is not None and sys.platform != "win32":
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, token.cancel, "Interrupted")

    async with ChatClient(http_config=config.get_http_config()) as client:
        await client.chat(
            provider,
            options,
            custom_api_url=config.get_custom_api_url(provider),
            advanced=config.get_advanced_endpoints(provider),
        )


@app.command("chat")
def chat_command(
    prompt: str = typer.Argument(..., help="User message to send."),
    provider: str | None = typer.Option(None, "--provider", "-p", help="Provider id (defaults to chat.provider)."),
    model: str | None = typer.Option(None, "--model", "-m", help="Model id (defaults to chat.model)."),
    system: str | None = typer.Option(None, "--system", "-s", help="System prompt."),
    thinking: bool | None = typer.Option(None, "--thinking/--no-thinking", help="Request a reasoning trace."),
    effort: str | None = typer.Option(None, "--effort", help="Reasoning effort: low, medium, high or auto."),
    max_tokens: int | None = typer.Option(None, "--max-tokens"),
    temperature: float | None = typer.Option(None, "--temperature"),
    config_path: str | None = typer.Option(None, "--config", help="User YAML configuration file."),
) -> None:
    """Stream one chat turn to stdout."""
    config = _load_configuration(config_path)

    try:
        chat_conf = config.get_chat_config()
        provider = provider or chat_conf["provider"]
        api_key = config.get_api_key(provider)
    except ConfigurationError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from e

    messages: list[Message] = []
    system_prompt = system if system is not None else chat_conf.get("system_prompt")
    if system_prompt:
        messages.append(Message(role="system", content=system_prompt))
    messages.append(Message(role="user", content=prompt))
    if chat_conf.get("max_context_tokens"):
        messages = limit_messages_by_tokens(messages, chat_conf["max_context_tokens"])

    def on_thinking_chunk(text: str) -> None:
        typer.secho(text, dim=True, nl=False)

    def on_thinking_complete(_: str) -> None:
        typer.echo("\n")

    def on_chunk(text: str) -> None:
        typer.echo(text, nl=False)

    def on_error(error: Exception) -> None:
        if isinstance(error, CancellationError):
            typer.secho("\n[cancelled]", fg=typer.colors.YELLOW, err=True)

    options = ChatOptions(
        model=model or chat_conf["model"],
        messages=messages,
        api_key=api_key,
        temperature=temperature if temperature is not None else chat_conf.get("temperature"),
        max_tokens=max_tokens if max_tokens is not None else chat_conf.get("max_tokens"),
        enable_thinking=thinking if thinking is not None else bool(chat_conf.get("enable_thinking")),
        reasoning_effort=effort or chat_conf["reasoning_effort"],
        cancellation=CancellationToken(),
        on_chunk=on_chunk,
        on_error=on_error,
        on_thinking_chunk=on_thinking_chunk,
        on_thinking_complete=on_thinking_complete,
    )

    try:
        asyncio.run(_run_chat(config, provider, options))
    except (ConfigurationError, TransportError) as e:
        typer.secho(f"\n{e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from e
    typer.echo()


@app.command("models")
def models_command(
    provider: str = typer.Option(..., "--provider", "-p", help="Provider id."),
    config_path: str | None = typer.Option(None, "--config", help="User YAML configuration file."),
) -> None:
    """List the models a provider serves."""
    config = _load_configuration(config_path)

    async def _fetch():
        async with ChatClient(http_config=config.get_http_config()) as client:
            return await client.fetch_models(
                provider,
                config.get_api_key(provider),
                custom_api_url=config.get_custom_api_url(provider),
                advanced=config.get_advanced_endpoints(provider),
            )

    try:
        models = asyncio.run(_fetch())
    except (ConfigurationError, TransportError) as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from e

    for info in models:
        typer.echo(f"{info.id}\t{info.name}")


@app.command("capabilities")
def capabilities_command(model_id: str = typer.Argument(..., help="Model identifier.")) -> None:
    """Print the inferred capability record as JSON."""
    typer.echo(json.dumps(get_model_capabilities(model_id), indent=2))


@app.command("tokens")
def tokens_command(text: str = typer.Argument(..., help="Text to estimate.")) -> None:
    """Print the estimated token count of TEXT."""
    typer.echo(str(estimate_tokens(text)))


def cli_main() -> None:
    app()


if __name__ == "__main__":
    cli_main()
