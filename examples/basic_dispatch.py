from __future__ import annotations

import argparse
import asyncio
import json
import logging

from tool_bridge import ToolBridge

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

SAMPLE_RESPONSE = """I'll look that up in the document store.

```json
{"mcp_instructions": {"target": "mongodb", "tool": "find_documents", "params": {"collection": "documents", "limit": 5}}}
```
"""


def on_tool_start(backend: str, tool: str) -> None:
    print(f"-> calling {backend}.{tool}")


async def run(args: argparse.Namespace) -> None:
    """
    Route one tool call through backends configured in the environment.

    Set e.g. MONGODB_MCP_SERVER_COMMAND="node mongodb-mcp-server.js" or
    ELASTICSEARCH_MCP_SERVER_URL=http://localhost:3002/mcp first.
    """
    async with ToolBridge.from_env(on_tool_start=on_tool_start) as bridge:
        if not bridge.backends:
            logger.error("No backends configured; set <NAME>_MCP_SERVER_COMMAND or _URL")
            return

        if args.tool:
            params = json.loads(args.params) if args.params else {}
            result = await bridge.call_tool(args.backend, args.tool, params)
            print(result.as_text())
        else:
            outcome = await bridge.handle_response(SAMPLE_RESPONSE)
            for message in outcome.messages():
                print(message)
                print("---")

        print(json.dumps(bridge.status(), indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(description="Dispatch a tool call to a configured backend")
    parser.add_argument("--backend", default="mongodb")
    parser.add_argument("--tool", help="Tool to call directly instead of parsing the sample response")
    parser.add_argument("--params", help="JSON object of tool arguments")
    asyncio.run(run(parser.parse_args()))


if __name__ == "__main__":
    main()
