"""
FORKY MAIN - Entry Point and CLI

Commands:
    generate - Run one streaming generation and print the chunks
    export   - Export a saved graph (JSON) to Parquet
    config   - Show the effective engine configuration

Usage:
    # Stream an answer (needs OPENAI_API_KEY, ANTHROPIC_API_KEY or GLM_API_KEY)
    python main.py generate "Plan a three-day trip to Lisbon"

    # Answer a follow-up with its parent as context
    python main.py generate "Make it cheaper" --parent-prompt "Plan a trip to Lisbon"

    # Save the resulting graph, then export it
    python main.py generate "Plan a trip" --save graph.json
    python main.py export graph.json --output ./export

    # Show configuration (TOML + FORKY_* overrides)
    python main.py config
"""
import asyncio
import logging
import sys
from pathlib import Path

import msgspec


def _build_engine():
    from core.graph_store import GraphStore
    from infrastructure.config import get_config
    from infrastructure.persistence import InMemoryRepository, Project
    from orchestration.generation import GenerationOrchestrator

    config = get_config()
    store = GraphStore(project_id="cli", project_name=config.untitled_project_name)
    repository = InMemoryRepository()
    repository.add_project(Project(id="cli", name=config.untitled_project_name))
    orchestrator = GenerationOrchestrator(store, repository, config=config)
    return store, orchestrator


async def _generate(args) -> int:
    from core.errors import EngineError
    from core.schemas import Position

    store, orchestrator = _build_engine()

    parent_id = None
    if args.parent_prompt:
        parent_id = store.add_node_with_prompt(Position(), args.parent_prompt)
    if parent_id is not None:
        node_id = store.create_child_node(parent_id, args.prompt)
    else:
        node_id = store.add_node_with_prompt(Position(), args.prompt)

    try:
        stream_id = await orchestrator.start_generation(node_id, model=args.model)
    except EngineError as e:
        print(f"Generation failed: {e}", file=sys.stderr)
        return 1

    channel = orchestrator.get_stream(stream_id)
    if channel is not None:
        async for event in channel.events():
            if isinstance(event.chunk, str):
                print(event.chunk, end="", flush=True)
            if event.is_done:
                break
    await orchestrator.wait_idle()
    print()

    node = store.get_node(node_id)
    if node.orchestration.last_error:
        print(f"Generation failed: {node.orchestration.last_error}", file=sys.stderr)
        return 1
    if node.summary:
        print(f"\nSummary: {node.summary}")
    if store.project_name:
        print(f"Project: {store.project_name}")

    if args.save:
        Path(args.save).write_bytes(store.dump_json())
        print(f"Graph saved to {args.save}")
    return 0


def cmd_generate(args):
    """Handle generate command - stream one answer to stdout."""
    sys.exit(asyncio.run(_generate(args)))


def cmd_export(args):
    """Handle export command - export a saved graph to Parquet."""
    from core.graph_store import GraphStore

    source = Path(args.graph_file)
    if not source.exists():
        print(f"Graph file not found: {source}")
        sys.exit(1)

    store = GraphStore()
    store.load_json(source.read_bytes())

    print(f"Exporting graph to {args.output}...")
    nodes_path, edges_path = store.save_parquet(Path(args.output))
    print(f"Exported {store.node_count} nodes, {store.edge_count} edges")
    print(f"  Nodes: {nodes_path}")
    print(f"  Edges: {edges_path}")


def cmd_config(args):
    """Handle config command - print the effective configuration."""
    from infrastructure.config import get_config

    config = get_config()
    print(msgspec.json.format(msgspec.json.encode(config), indent=2).decode())


def main():
    """Main entry point with subcommands."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Forky - Branching Prompt Graph Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # generate command
    generate_parser = subparsers.add_parser("generate", help="Stream one generation")
    generate_parser.add_argument("prompt", help="Prompt for the node")
    generate_parser.add_argument("--model", help="Model id (default from config)")
    generate_parser.add_argument("--parent-prompt", help="Prompt of a parent node used as context")
    generate_parser.add_argument("--save", help="Write the resulting graph as JSON")
    generate_parser.set_defaults(func=cmd_generate)

    # export command
    export_parser = subparsers.add_parser("export", help="Export graph to Parquet")
    export_parser.add_argument("graph_file", help="Graph JSON written by `generate --save`")
    export_parser.add_argument("--output", "-o", default="./export", help="Output directory")
    export_parser.set_defaults(func=cmd_export)

    # config command
    config_parser = subparsers.add_parser("config", help="Show engine configuration")
    config_parser.set_defaults(func=cmd_config)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    args.func(args)


if __name__ == "__main__":
    main()
