import argparse
import io
import json
import mimetypes
import wave
from pathlib import Path
from typing import Iterator, Tuple

import httpx


def iter_wav_segments(path: Path, chunk_seconds: float) -> Iterator[Tuple[int, bytes]]:
    with wave.open(str(path), "rb") as src:
        frames_per_chunk = max(1, int(src.getframerate() * chunk_seconds))
        index = 0
        while True:
            frames = src.readframes(frames_per_chunk)
            if not frames:
                break
            buf = io.BytesIO()
            with wave.open(buf, "wb") as dst:
                dst.setnchannels(src.getnchannels())
                dst.setsampwidth(src.getsampwidth())
                dst.setframerate(src.getframerate())
                dst.writeframes(frames)
            yield index, buf.getvalue()
            index += 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Send audio to the /transcribe endpoint")
    parser.add_argument("audio_path", help="Path to an audio file")
    parser.add_argument("--url", default="http://localhost:8000/api/v1/transcribe", help="Transcribe endpoint URL")
    parser.add_argument(
        "--chunk-seconds",
        type=float,
        default=0.0,
        help="Split a WAV file into segments of this length, like the chunked engine does",
    )
    args = parser.parse_args()

    path = Path(args.audio_path)
    if not path.exists():
        raise SystemExit(f"File not found: {path}")

    content_type = mimetypes.guess_type(path.name)[0] or ""
    if not content_type.startswith("audio/"):
        content_type = f"audio/{path.suffix.lstrip('.').lower() or 'webm'}"
    with httpx.Client(timeout=httpx.Timeout(connect=10.0, read=120.0, write=120.0, pool=10.0)) as client:
        if args.chunk_seconds > 0 and path.suffix.lower() == ".wav":
            for index, segment in iter_wav_segments(path, args.chunk_seconds):
                resp = client.post(args.url, files={"file": (f"segment-{index}.wav", segment, "audio/wav")})
                body = resp.json() if resp.headers.get("content-type", "").startswith("application/json") else resp.text
                print(f"[{index}] {resp.status_code} {json.dumps(body, ensure_ascii=False)}")
            return

        resp = client.post(args.url, files={"file": (path.name, path.read_bytes(), content_type)})

    if resp.headers.get("content-type", "").startswith("application/json"):
        print(json.dumps(resp.json(), indent=2, ensure_ascii=False))
    else:
        print(resp.text)


if __name__ == "__main__":
    main()
