"""
CLI to serve the emotion detection page.
"""
from __future__ import annotations
import argparse
import os


def main():
    p = argparse.ArgumentParser()
    p.add_argument("--host", default="127.0.0.1", help="Bind address")
    p.add_argument("--port", type=int, default=8000, help="Bind port")
    p.add_argument("--camera", type=int, default=None, help="Camera index (overrides CAMERA_INDEX)")
    p.add_argument("--log-level", default=None, help="Logging level (overrides LOG_LEVEL)")
    args = p.parse_args()

    # Settings read the environment at import time, so set overrides first
    if args.camera is not None:
        os.environ["CAMERA_INDEX"] = str(args.camera)
    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level

    import uvicorn
    uvicorn.run("api.main:app", host=args.host, port=args.port)

if __name__ == "__main__":
    main()
