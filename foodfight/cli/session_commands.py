"""
Session CLI Commands

Operator access to sessions: list, show, close, sweep.
The CLI acts as a system caller, so creator-only checks do not apply.
"""
import asyncio
from typing import Awaitable, Callable

from foodfight.database import create_engine_for, create_session_factory
from foodfight.errors import FoodFightError
from foodfight.services.lifecycle_service import LifecycleService
from foodfight.services.query_service import QueryService


class _DatabaseCommand:

    def __init__(self, database_url: str):
        self.database_url = database_url

    def _run(self, work: Callable[..., Awaitable[int]]) -> int:
        try:
            return asyncio.run(self._with_db(work))
        except FoodFightError as e:
            print(f"Error [{e.code}]: {e.message}")
            return 1
        except Exception as e:
            print(f"Error: {e}")
            return 1

    async def _with_db(self, work: Callable[..., Awaitable[int]]) -> int:
        engine = create_engine_for(self.database_url)
        factory = create_session_factory(engine)
        try:
            async with factory() as db:
                return await work(db)
        finally:
            await engine.dispose()


class SessionCommand(_DatabaseCommand):
    """Session CLI command handler."""

    def execute(self, args) -> int:
        """Execute session command."""
        if args.session_action == "list":
            return self._run(lambda db: self._list(db, args.limit))
        elif args.session_action == "show":
            return self._run(lambda db: self._show(db, args.id))
        elif args.session_action == "close":
            return self._run(lambda db: self._close(db, args.id, args.force))
        else:
            print("Error: Unknown session action")
            return 1

    async def _list(self, db, limit: int) -> int:
        print("=== Sessions ===")
        sessions = await QueryService.list_sessions(db, limit=limit)
        if not sessions:
            print("No sessions found")
            return 0

        print(f"\n{'ID':<5} {'Name':<30} {'Mode':<8} {'Phase':<11} {'Winner':<25}")
        print("-" * 82)
        for s in sessions:
            winner = s["winner"]["name"] if s["winner"] else "-"
            print(f"{s['id']:<5} {s['name'][:28]:<30} {s['mode']:<8} {s['phase']:<11} {winner[:23]:<25}")
        return 0

    async def _show(self, db, session_id: int) -> int:
        view = await QueryService.get_session(db, session_id, observe=False)
        session = view["session"]

        print(f"=== Session {session['id']}: {session['name']} ===")
        print(f"  Mode:    {session['mode']}")
        print(f"  Phase:   {session['phase']}")
        print(f"  Creator: {session['creator_id']}")
        if session["current_round"]:
            print(f"  Round:   {session['current_round']}")
        if session["end_time"]:
            print(f"  Ends:    {session['end_time']}")
        if view["winner"]:
            print(f"  Winner:  {view['winner']['name']}")

        print(f"\nCandidates ({len(view['candidates'])}):")
        for c in view["candidates"]:
            print(f"  [{c['id']}] {c['name']}")

        for round_number, matches in view.get("matches_by_round", {}).items():
            print(f"\nRound {round_number}:")
            for m in matches:
                slot_b = m["slot_b"]["name"] if m["slot_b"] else "(bye)"
                print(f"  #{m['position']} {m['slot_a']['name']} {m['votes_a']} - {m['votes_b']} {slot_b}")

        if view.get("standings"):
            print("\nStandings:")
            for rank, s in enumerate(view["standings"], start=1):
                print(f"  {rank}. {s['name']} {s['average']:.2f} ({s['count']} scores)")
        return 0

    async def _close(self, db, session_id: int, force: bool) -> int:
        transitioned = await LifecycleService.check_phase_end(db, session_id, force=force)
        session = await LifecycleService.get_session_or_404(db, session_id)
        if transitioned:
            print(f"✓ Session {session_id} advanced: phase={session.phase}, round={session.current_round}")
        else:
            print(f"Session {session_id} unchanged: phase={session.phase}")
        return 0


class SweepCommand(_DatabaseCommand):
    """Run the phase-end check over every expired voting session."""

    def execute(self, args) -> int:
        return self._run(self._sweep)

    async def _sweep(self, db) -> int:
        count = await LifecycleService.sweep_expired(db)
        print(f"✓ {count} sessions advanced")
        return 0
