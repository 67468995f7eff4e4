"""Backend launcher that sets the Windows event loop policy before uvicorn starts."""
import asyncio
import os
import sys

if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "personachat.main:app",
        host=os.environ.get("PERSONACHAT_HOST", "127.0.0.1"),
        port=int(os.environ.get("PERSONACHAT_PORT", "8765")),
    )
