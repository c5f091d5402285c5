from __future__ import annotations

import asyncio
import logging
import sys

from pipeline.graph import get_pipeline

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


async def main(image_path: str = "test.jpg") -> None:
    """
    Run a sample debug pass through the pipeline.

    Expects a `test.jpg` image in the working directory or a path
    as the first command-line argument.
    """
    initial_state = {
        "source": image_path,
        "personality": None,
        "image": None,
        "labels": None,
        "raw_text": None,
        "captions": None,
        "error": None,
    }

    # Stream: see each node's state delta live
    async for step in get_pipeline().astream(initial_state):
        node = list(step.keys())[0]
        print("\n" + "=" * 40)
        print(f"NODE: {node}")
        print(f"DELTA: {step[node]}")


if __name__ == "__main__":
    asyncio.run(main(*sys.argv[1:2]))
