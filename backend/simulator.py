"""
Wearable simulator: serves sensor frames over a websocket so the backend
can be run without hardware.

    python simulator.py --port 8080 --fall-every 20
"""

import argparse
import json
import logging
import math
import random
import time
from typing import Dict, Optional

from websockets.exceptions import ConnectionClosed
from websockets.sync.server import ServerConnection, serve

from config import DEFAULT_SERVER_URL
from utils import now_ms, setup_logging

logger = logging.getLogger(__name__)

GRAVITY = 9.81
SAMPLE_INTERVAL = 0.1  # seconds, matches the wearable's update rate


def resting_frame(angle: float) -> Dict:
    """Gentle circular motion on top of gravity"""
    return {
        "accelerometer": {
            "x": math.sin(angle) * 2,
            "y": math.cos(angle) * 2,
            "z": GRAVITY + math.sin(angle * 2) * 0.5,
        },
        "gyroscope": {
            "x": math.cos(angle) * 0.5,
            "y": math.sin(angle) * 0.5,
            "z": math.sin(angle * 3) * 0.2,
        },
        "timestamp": now_ms(),
    }


def fall_frames() -> list:
    """Short free-fall, a hard impact with rotation, then lying still"""
    frames = []
    for _ in range(3):
        frames.append({
            "accelerometer": {"x": random.uniform(-0.5, 0.5), "y": random.uniform(-0.5, 0.5), "z": 1.0},
            "gyroscope": {"x": 40.0, "y": 20.0, "z": 10.0},
        })
    frames.append({
        "accelerometer": {"x": 18.0, "y": 12.0, "z": 25.0},
        "gyroscope": {"x": 250.0, "y": 220.0, "z": 150.0},
    })
    for _ in range(10):
        frames.append({
            "accelerometer": {"x": GRAVITY, "y": 0.2, "z": 0.3},
            "gyroscope": {"x": 0.0, "y": 0.0, "z": 0.0},
        })
    for frame in frames:
        frame["timestamp"] = now_ms()
    return frames


def make_handler(fall_every: Optional[float]):
    def handler(ws: ServerConnection):
        logger.info("Client connected: %s", ws.remote_address)
        angle = 0.0
        last_fall = time.monotonic()
        try:
            while True:
                if fall_every and time.monotonic() - last_fall >= fall_every:
                    logger.warning("Simulating fall")
                    for frame in fall_frames():
                        ws.send(json.dumps(frame))
                        time.sleep(SAMPLE_INTERVAL)
                    last_fall = time.monotonic()
                    continue
                angle += 0.1
                ws.send(json.dumps(resting_frame(angle)))
                time.sleep(SAMPLE_INTERVAL)
        except ConnectionClosed:
            logger.info("Client disconnected")

    return handler


def main():
    parser = argparse.ArgumentParser(description="Wearable sensor simulator")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=int(DEFAULT_SERVER_URL.rsplit(":", 1)[1]))
    parser.add_argument("--fall-every", type=float, default=None,
                        help="seconds between simulated falls (default: never)")
    args = parser.parse_args()

    setup_logging()
    with serve(make_handler(args.fall_every), args.host, args.port) as server:
        logger.info("Simulator listening on ws://%s:%d", args.host, args.port)
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Stopping...")


if __name__ == "__main__":
    main()
