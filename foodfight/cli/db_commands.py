"""
Database CLI Commands

Schema management: init, reset
"""
import asyncio

from foodfight.database import create_engine_for, init_db, drop_db


class DbCommand:
    """Database CLI command handler."""

    def __init__(self, database_url: str):
        self.database_url = database_url

    def execute(self, args) -> int:
        """Execute database command."""
        if args.db_action == "init":
            return self._init()
        elif args.db_action == "reset":
            return self._reset(args)
        else:
            print("Error: Unknown db action")
            return 1

    def _init(self) -> int:
        print("=== Initialize Database ===")
        try:
            asyncio.run(self._async_init(reset=False))
            print("✓ Tables ready")
            return 0
        except Exception as e:
            print(f"Error: {e}")
            return 1

    def _reset(self, args) -> int:
        print("=== Reset Database ===")
        if not args.force:
            confirm = input("This deletes every session. Type 'yes' to continue: ")
            if confirm.strip().lower() != "yes":
                print("Aborted")
                return 1
        try:
            asyncio.run(self._async_init(reset=True))
            print("✓ Tables dropped and recreated")
            return 0
        except Exception as e:
            print(f"Error: {e}")
            return 1

    async def _async_init(self, reset: bool) -> None:
        engine = create_engine_for(self.database_url)
        try:
            if reset:
                await drop_db(engine)
            await init_db(engine)
        finally:
            await engine.dispose()
