"""
Cardroll CLI - Command-line interface for the game server.

Usage:
    cardroll serve [--host H] [--port P]   Run the HTTP API (uvicorn)
    cardroll crank [--interval S]          Run the backend crank
    cardroll simulate [--players N]        Play one local game in simulated time
"""

import argparse
import logging
import random
import sys
import threading

from .config import GameConfig

logger = logging.getLogger("cardroll")


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Cardroll - card-versus-die game server",
        prog="cardroll",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    # Crank command
    crank_parser = subparsers.add_parser("crank", help="Tick tracked sessions periodically")
    crank_parser.add_argument("--interval", type=float, default=None, help="Seconds between runs")

    # Simulate command
    sim_parser = subparsers.add_parser("simulate", help="Play a local game")
    sim_parser.add_argument("--players", type=int, default=3, help="Number of players")
    sim_parser.add_argument("--seed", type=int, default=None, help="Seed for player choices")
    sim_parser.add_argument(
        "--fail-requests", type=int, default=0,
        help="Reject this many oracle requests to exercise recovery",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "crank":
        cmd_crank(args)
    elif args.command == "simulate":
        cmd_simulate(args)
    else:
        parser.print_help()
        sys.exit(1)


def cmd_serve(args):
    """Run the API with uvicorn."""
    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn not installed. Install with: pip install uvicorn")
        sys.exit(1)

    from .api.app import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)


def cmd_crank(args):
    """Tick every tracked session on an interval until interrupted."""
    from apscheduler.schedulers.background import BackgroundScheduler
    from .api.service import build_session_manager

    config = GameConfig.from_env()
    manager = build_session_manager(config)
    interval = args.interval or config.poll_interval

    def run_crank():
        results = manager.crank()
        changed = [r for r in results if r.changed]
        if changed:
            logger.info(f"Crank advanced {len(changed)} of {len(results)} sessions")

    scheduler = BackgroundScheduler()
    scheduler.add_job(run_crank, "interval", seconds=interval, max_instances=1, coalesce=True)
    scheduler.start()
    logger.info(f"Crank running every {interval}s")

    stop = threading.Event()
    try:
        stop.wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.shutdown()
        manager.close()
        logger.info("Crank stopped")


def cmd_simulate(args):
    """
    Play a full game with N in-process clients.

    Every client has its own manager and bridge; they share one store
    and one oracle, like separate browsers sharing Redis and a chain.
    Time is simulated, so the game finishes immediately.
    """
    from .engine_core.action import PlayerInfo
    from .engine_core.state import Commitment, PhaseName
    from .randomness import RandomnessBridge, SimulatedOracle
    from .session import SessionManager, GameClient
    from .store import InMemoryStore

    config = GameConfig()
    rng = random.Random(args.seed)
    clock = {"now": 1_000_000.0}
    store = InMemoryStore(clock=lambda: clock["now"])
    oracle = SimulatedOracle(fail_requests=args.fail_requests, faces=config.die_faces)

    def make_manager():
        bridge = RandomnessBridge(oracle, store, config)
        return SessionManager(store, bridge=bridge, config=config, clock=lambda: clock["now"])

    host = make_manager()
    session = host.create_session(start_delay=5)
    clients = []
    for i in range(args.players):
        manager = host if i == 0 else make_manager()
        _, player = manager.join_session(session.code, PlayerInfo(display_name=f"Player {i + 1}"))
        clients.append(GameClient(manager, session.code, player.player_id))

    print(f"Session {session.code} with {args.players} players")
    last_round = 0
    result = None
    while result is None or not result.finished:
        for client in clients:
            result = client.step()
            view = result.view
            if view.phase.value == PhaseName.COMMIT.value and view.me and not view.me.has_committed:
                cards = [c.value for c in view.me.cards if not c.burned]
                choice = (
                    Commitment.select(rng.choice(cards)) if cards and rng.random() < 0.8
                    else Commitment.skipped()
                )
                client.manager.submit_commitment(session.code, client.player_id, choice)
            if view.phase.value == PhaseName.RESOLVE.value and view.round != last_round:
                last_round = view.round
                scores = ", ".join(f"{p.display_name}={p.credits}" for p in view.players)
                print(f"Round {view.round}: rolled {view.last_roll} ({scores})")
        clock["now"] += config.poll_interval

    view = result.view
    if view.phase.value == PhaseName.FAILED.value:
        print(f"Game failed: {view.failure_reason}")
    else:
        print(f"Winner: {view.winner.display_name if view.winner else 'none'}")
    for entry in host.leaderboard():
        print(f"  #{entry.rank} {entry.display_name}: {entry.wins}/{entry.games} ({entry.win_rate}%)")

    for client in clients:
        client.manager.close()


if __name__ == "__main__":
    main()
