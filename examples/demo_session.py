from __future__ import annotations

import asyncio
import logging

from story_loom.core.config import EngineConfig, PlaybackConfig
from story_loom.core.engine import StoryEngine
from story_loom.core.types import DirectorOutput, GraphDelta, GraphEdge, SpeechResult
from story_loom.persistence.sqlalchemy import (
    SQLAlchemySnapshotStore,
    SQLAlchemyUnitOfWork,
    build_engine,
    build_session_factory,
    create_schema,
)


class DemoDirector:
    async def next_turn(self, context):
        trauma = context.ledger.get("trauma_level", 0)
        return DirectorOutput(
            narrative=f"You {context.action}. The corridor narrows and the lamps dim.",
            choices=["Keep walking", "Turn back"],
            visual_prompt="a narrowing stone corridor lit by failing lamps",
            ledger_delta={"traumaLevel": trauma + 40, "hopeLevel": 70},
            graph_delta=GraphDelta(
                edges_added=[
                    GraphEdge(source="Petra", target="Subject_84", relation="follows", weight=3),
                    GraphEdge(source="Nobody", target="Subject_84", relation="haunts"),
                ]
            ),
            location="Lower Corridor",
        )


class DemoGenerator:
    async def generate_image(self, prompt: str) -> bytes:
        await asyncio.sleep(0.05)
        return f"PNG:{prompt}".encode()

    async def generate_speech(self, text: str) -> SpeechResult:
        await asyncio.sleep(0.05)
        # 0.2 seconds of silence at 24kHz, 16-bit mono.
        return SpeechResult(audio_bytes=b"\x00\x00" * 4_800, duration_seconds=0.2)

    async def generate_video(self, image_bytes: bytes, prompt: str) -> bytes:
        await asyncio.sleep(0.1)
        return b"MP4:" + image_bytes


def make_snapshot_store() -> SQLAlchemySnapshotStore:
    db = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(db)
    session_factory = build_session_factory(db)

    def _uow_factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return SQLAlchemySnapshotStore(_uow_factory)


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    store = make_snapshot_store()
    config = EngineConfig(playback=PlaybackConfig(auto_advance=True))

    async with StoryEngine(DemoDirector(), DemoGenerator(), snapshot_store=store, config=config) as engine:
        for action in ("step inside", "follow the lamps"):
            result = await engine.resolve_action(action)
            print("resolve_action status:", result.status)
            print("narrative:", result.turn.text)
            print("enqueued:", [m.value for m in result.enqueued])

        await engine.wait_for_media()
        print("ledger:", engine.ledger)
        print("edges:", [edge.key for edge in engine.edges])
        print("stats:", engine.timeline_stats())

        engine.set_current_turn(engine.timeline.turns[0].id)
        engine.playback.play(engine.timeline.turns[0].id)
        await asyncio.sleep(0.6)
        print("playing after auto-advance:", engine.playback.state.current_playing_turn_id)

        print("save:", engine.save_snapshot())
        print("load:", engine.load_snapshot())


if __name__ == "__main__":
    asyncio.run(main())
