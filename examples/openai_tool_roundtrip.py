from __future__ import annotations

import argparse
import asyncio
import logging

from dotenv import load_dotenv
from openai import AsyncOpenAI

from tool_bridge import ToolBridge

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

load_dotenv()


async def roundtrip(question: str, model: str, native_tools: bool) -> None:
    """
    Ask a model a question and execute whatever tool it picks.

    With ``native_tools`` the catalog goes out as OpenAI function tools and
    the model answers with ``tool_calls``; otherwise the catalog is put in
    the system prompt and the model writes a fenced ``mcp_instructions``
    block that the bridge extracts from plain text.
    """
    client = AsyncOpenAI()
    async with ToolBridge.from_env() as bridge:
        await bridge.start(eager=True)

        messages = [{"role": "user", "content": question}]
        kwargs = {}
        if native_tools and bridge.openai_tools():
            kwargs["tools"] = bridge.openai_tools()
        else:
            messages.insert(0, {"role": "system", "content": bridge.tool_prompt()})

        completion = await client.chat.completions.create(model=model, messages=messages, **kwargs)
        outcome = await bridge.handle_response(completion)

        if not outcome.dispatched:
            logger.info("Model answered without calling a tool")
        for message in outcome.messages():
            print(message)
            print()


def main() -> None:
    parser = argparse.ArgumentParser(description="OpenAI completion -> tool call -> formatted result")
    parser.add_argument("question", nargs="?", default="How many documents are in the documents collection?")
    parser.add_argument("--model", default="gpt-4o-mini")
    parser.add_argument("--native-tools", action="store_true")
    args = parser.parse_args()
    asyncio.run(roundtrip(args.question, args.model, args.native_tools))


if __name__ == "__main__":
    main()
