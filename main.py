"""Story Tavern launcher. Serves the API, or plays a story in the terminal."""

import argparse
import asyncio
import os
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "13013"))

CONSOLE_HELP = "/hints  list hints   /hint [id]  use a hint   /reset  start over   /quit  exit"


def _print_messages(messages) -> None:
    for msg in messages:
        if msg.type == "system":
            print(f"  [{msg.content}]")
        elif msg.type == "assistant":
            print(f"{msg.speaker}: {msg.content}")


async def play(story_id: str, echo: bool = False) -> None:
    from storyplay.config import load_settings
    from storyplay.llm import EchoLLM, HttpLLM
    from storyplay.orchestrator import GameSession, InvalidInput
    from storyplay.stories import StoryCatalog

    settings = load_settings()
    catalog = StoryCatalog.load(settings.stories_dir)
    llm = EchoLLM() if echo else HttpLLM.from_settings(settings)
    session = GameSession(catalog.get(story_id), llm, settings)

    print(f"== {session.story.title} ==  ({CONSOLE_HELP})")
    _print_messages(await session.start())

    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        line = line.strip()
        if not line:
            continue
        if line == "/quit":
            break
        if line == "/reset":
            _print_messages(await session.reset())
            continue
        if line == "/hints":
            for c in session.hint_candidates():
                print(f"  {c.id} ({c.difficulty}): {c.text}")
            continue
        try:
            if line.startswith("/hint"):
                choice_id = line[len("/hint"):].strip() or None
                _print_messages(await session.request_hint(choice_id))
            else:
                _print_messages(await session.process_user_message(line))
        except InvalidInput as e:
            print(f"  ! {e}")
            continue
        state = session.state
        print(f"  (진행도 {state.story_progress:.0f}% | 점수 {state.score} | 힌트 {state.hints_used})")


def main():
    parser = argparse.ArgumentParser(description="Story Tavern launcher")
    parser.add_argument("--play", metavar="STORY", default=None,
                        help="Play a story in the terminal instead of serving the API")
    parser.add_argument("--echo", action="store_true",
                        help="With --play: echo replies instead of calling the LLM backend")
    parser.add_argument("--reload", action="store_true",
                        help="Restart the server on code changes")
    args = parser.parse_args()

    if args.play:
        asyncio.run(play(args.play, echo=args.echo))
        return

    import uvicorn

    print(f"Starting backend on http://localhost:{PORT} ...")
    uvicorn.run("backend.app:app", host=HOST, port=PORT, reload=args.reload)


if __name__ == "__main__":
    main()
