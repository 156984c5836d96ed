"""Minimal stand-in for mpv's JSON IPC server, launched as a subprocess by the player tests."""
import asyncio
import json
import os
import sys

PROPERTIES = {
    "mpv-version": "mpv 0.38.0",
    "duration": 100.0,
    "time-pos": 5.0,
    "pause": False,
}


async def main():
    path = next(a.split("=", 1)[1] for a in sys.argv if a.startswith("--input-ipc-server="))
    done = asyncio.Event()

    async def handle(reader, writer):
        while True:
            line = await reader.readline()
            if not line:
                break
            request = json.loads(line)
            command = request["command"]
            # Unsolicited event first, like a real player emits.
            writer.write(b'{"event":"playback-restart"}\n')
            if command[0] == "get_property" and command[1] in PROPERTIES:
                reply = {"data": PROPERTIES[command[1]], "error": "success"}
            elif command[0] == "quit":
                reply = {"error": "success"}
                done.set()
            else:
                reply = {"error": "property not found"}
            reply["request_id"] = request.get("request_id")
            writer.write((json.dumps(reply) + "\n").encode())
            await writer.drain()
        writer.close()

    server = await asyncio.start_unix_server(handle, path)
    async with server:
        await done.wait()
    if os.path.exists(path):
        os.remove(path)


if __name__ == "__main__":
    asyncio.run(main())
