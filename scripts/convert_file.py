# scripts/convert_file.py
"""
Convert a Solidity file through a running converter server and print progress.

Usage:
    python scripts/convert_file.py contracts/Ballot.sol
    python scripts/convert_file.py Ballot.sol --server http://localhost:3001 --out build/
"""

import argparse
import asyncio
import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from converter.client.sse import SSEEvent
from converter.client.store import ConversionStore
from converter.client.stream import ConversionClient, ConversionRequestError


class PrintingStore(ConversionStore):
    """ConversionStore that echoes each applied event."""

    def apply(self, event: SSEEvent, generation=None) -> bool:
        applied = super().apply(event, generation)
        if not applied:
            return applied
        data = event.data
        if event.type.endswith("_start") or event.type.endswith("_complete"):
            print(f"[{event.type}] {data.get('message', '')}")
        elif event.type == "validation":
            print(
                f"[validation] attempt {data['attempt']}/{data['maxAttempts']}: "
                f"{data['validCount']} valid, {data['failedCount']} failed"
            )
        elif event.type == "artifact_ready":
            c = data["contract"]
            print(f"[ready] {c['name']} ({data['readySoFar']}/{data['totalExpected']})")
        elif event.type == "retrying":
            print(f"[retrying] attempt {data['attempt']}: {', '.join(data.get('failedNames', []))}")
        elif event.type == "error":
            print(f"[error] {data.get('message')}")
            if data.get("details"):
                print(f"        {data['details']}")
        return applied


async def run(source: str, server: str, out_dir: Path) -> int:
    client = ConversionClient(server, store=PrintingStore())
    try:
        store = await client.convert(source)
    except ConversionRequestError as exc:
        hint = f" (retry after {exc.retry_after}s)" if exc.retry_after else ""
        print(f"[rejected] {exc.status_code} {exc.error}: {exc.message}{hint}")
        return 2
    finally:
        await client.aclose()

    for contract in store.contracts:
        if out_dir:
            out_dir.mkdir(parents=True, exist_ok=True)
            path = out_dir / f"{contract['name']}.cash"
            path.write_text(contract["code"], encoding="utf-8")
            print(f"[saved] {path}")

    return 0 if store.status.value == "complete" else 1


def main():
    parser = argparse.ArgumentParser(description="Convert a Solidity file to CashScript")
    parser.add_argument("file", type=Path)
    parser.add_argument("--server", default="http://localhost:3001")
    parser.add_argument("--out", type=Path, default=None, help="Directory for .cash files")
    args = parser.parse_args()

    source = args.file.read_text(encoding="utf-8")
    sys.exit(asyncio.run(run(source, args.server, args.out)))


if __name__ == "__main__":
    main()
