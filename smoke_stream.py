"""Quick check: stream a 16 kHz mono WAV to a running relay the way the
device does, and print the transcript lines that come back.

    python smoke_stream.py clip.wav [http://localhost:3001]
"""

import asyncio
import json
import sys
import wave

import httpx

CHUNK_BYTES = 3200  # 100 ms of 16-bit PCM at 16 kHz


def read_pcm(path: str) -> bytes:
    with wave.open(path, "rb") as wf:
        if wf.getframerate() != 16000 or wf.getnchannels() != 1 or wf.getsampwidth() != 2:
            raise SystemExit("expected 16 kHz mono 16-bit PCM")
        return wf.readframes(wf.getnframes())


async def pcm_chunks(pcm: bytes):
    for offset in range(0, len(pcm), CHUNK_BYTES):
        yield pcm[offset: offset + CHUNK_BYTES]
        # Pace roughly like a live microphone.
        await asyncio.sleep(0.1)


async def main() -> None:
    if len(sys.argv) < 2:
        raise SystemExit(__doc__)
    base_url = sys.argv[2] if len(sys.argv) > 2 else "http://localhost:3001"
    pcm = read_pcm(sys.argv[1])
    print(f"Streaming {len(pcm) / 32000:.1f}s of audio to {base_url} ...\n")

    async with httpx.AsyncClient(base_url=base_url, timeout=None) as client:
        async with client.stream(
            "POST",
            "/stream-audio",
            content=pcm_chunks(pcm),
            headers={"Content-Type": "audio/L16"},
        ) as response:
            if response.status_code != 200:
                print(f"  ERROR: HTTP {response.status_code}")
                return
            async for line in response.aiter_lines():
                if line.strip():
                    print(json.loads(line))


if __name__ == "__main__":
    asyncio.run(main())
