from __future__ import annotations

import argparse
import logging
from typing import Any, Callable

import httpx

from neuralchat_proxy.prompting import (
    DEFAULT_CONTEXT_EXCHANGES,
    DEFAULT_SYSTEM_PROMPT,
    SERVICE_UNAVAILABLE_MESSAGE,
    ConversationState,
    PromptFormat,
    build_messages,
    clean_reply,
    extract_generated_text,
    format_prompt,
    reply_for_error,
)

DEFAULT_PROXY_URL = "http://localhost:8000/api/chat"
QUIT_COMMANDS = {"/quit", "/exit"}

logger = logging.getLogger(__name__)


def _served_model(response: httpx.Response, payload: Any) -> str | None:
    header_model = response.headers.get("x-proxy-model")
    if header_model:
        return header_model
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        payload = payload[0]
    if isinstance(payload, dict) and isinstance(payload.get("model"), str):
        return payload["model"]
    return None


class ChatSession:
    def __init__(
        self,
        *,
        client: httpx.Client,
        url: str = DEFAULT_PROXY_URL,
        prompt_format: PromptFormat = PromptFormat.CHATML,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        context_exchanges: int = DEFAULT_CONTEXT_EXCHANGES,
        max_new_tokens: int = 512,
        temperature: float = 0.7,
        top_p: float = 0.9,
    ) -> None:
        self.client = client
        self.url = url
        self.prompt_format = prompt_format
        self.system_prompt = system_prompt
        self.context_exchanges = context_exchanges
        self.parameters: dict[str, Any] = {
            "max_new_tokens": max_new_tokens,
            "temperature": temperature,
            "top_p": top_p,
            "do_sample": True,
            "return_full_text": False,
        }
        self.state = ConversationState()

    def _post(self, prompt: str, parameters: dict[str, Any]) -> tuple[httpx.Response, Any]:
        response = self.client.post(
            self.url, json={"prompt": prompt, "parameters": parameters}
        )
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        return response, payload

    def connect(self) -> str:
        try:
            response, payload = self._post(
                "Hi", {"max_new_tokens": 5, "temperature": 0.7}
            )
        except httpx.HTTPError as exc:
            logger.warning("connection test failed: %s", exc)
            greeting = (
                "Hi there! I'm NeuralChat. The connection test had some issues, "
                "but let's try chatting anyway. Send me a message!"
            )
        else:
            if not response.is_success and response.status_code != 503:
                logger.warning(
                    "connection test returned status=%d body=%s",
                    response.status_code,
                    payload,
                )
            model = _served_model(response, payload)
            model_info = (
                f"I'm NeuralChat, powered by {model}."
                if model
                else "I'm NeuralChat, powered by Hugging Face's AI models."
            )
            greeting = (
                f"Hi there! {model_info} I'm a capable AI assistant ready to help "
                "with questions, creative tasks, and conversations. "
                "What would you like to talk about?"
            )
        self.state.ready = True
        self.state.append("bot", greeting)
        return greeting

    def send(self, message: str) -> str | None:
        message = message.strip()
        if not message or not self.state.ready or self.state.generating:
            return None

        messages = build_messages(
            self.state.history,
            message,
            system_prompt=self.system_prompt,
            context_exchanges=self.context_exchanges,
        )
        self.state.append("user", message)
        self.state.generating = True
        try:
            reply = self._generate(format_prompt(messages, self.prompt_format))
        finally:
            self.state.generating = False
        self.state.append("bot", reply)
        return reply

    def _generate(self, prompt: str) -> str:
        try:
            response, payload = self._post(prompt, self.parameters)
        except httpx.HTTPError as exc:
            logger.error("chat request failed: %s", exc)
            return SERVICE_UNAVAILABLE_MESSAGE

        if not response.is_success:
            error_reply = reply_for_error(response.status_code, payload)
            if error_reply is not None:
                return error_reply
            logger.error(
                "chat request returned status=%d body=%s",
                response.status_code,
                payload,
            )
            return SERVICE_UNAVAILABLE_MESSAGE

        return clean_reply(extract_generated_text(payload), self.prompt_format)


def run_repl(
    session: ChatSession,
    *,
    read_line: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
) -> int:
    write(f"bot> {session.connect()}")
    while True:
        try:
            line = read_line("you> ")
        except EOFError:
            break
        if line.strip().lower() in QUIT_COMMANDS:
            break
        reply = session.send(line)
        if reply is not None:
            write(f"bot> {reply}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="neuralchat-chat",
        description="Chat with a model through the NeuralChat proxy.",
    )
    parser.add_argument("--url", default=DEFAULT_PROXY_URL)
    parser.add_argument(
        "--format",
        dest="prompt_format",
        default=PromptFormat.CHATML.value,
        choices=[item.value for item in PromptFormat],
    )
    parser.add_argument("--system-prompt", default=DEFAULT_SYSTEM_PROMPT)
    parser.add_argument(
        "--context-exchanges", type=int, default=DEFAULT_CONTEXT_EXCHANGES
    )
    parser.add_argument("--max-new-tokens", type=int, default=512)
    parser.add_argument("--temperature", type=float, default=0.7)
    parser.add_argument("--top-p", type=float, default=0.9)
    parser.add_argument("--timeout", type=float, default=120.0)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    with httpx.Client(timeout=args.timeout) as client:
        session = ChatSession(
            client=client,
            url=args.url,
            prompt_format=PromptFormat(args.prompt_format),
            system_prompt=args.system_prompt,
            context_exchanges=args.context_exchanges,
            max_new_tokens=args.max_new_tokens,
            temperature=args.temperature,
            top_p=args.top_p,
        )
        return run_repl(session)


if __name__ == "__main__":
    raise SystemExit(main())
