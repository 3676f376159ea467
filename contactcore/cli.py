"""Command-line interface for contact identity resolution."""

import sys
import json
import argparse
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigManager
from .errors import ContactsError
from .logging_config import setup_logging
from .models import Actor, MergeData, RawContactRecord
from .repositories import SQLiteContactStore
from .services import ContactsService

console = Console()


def build_service(args) -> ContactsService:
    manager = ConfigManager(args.config)
    config = manager.load()

    level = "DEBUG" if args.verbose else config.logging.level
    setup_logging(format=config.logging.format, level=level, log_file=config.logging.log_file)

    db_path = args.db or config.storage.sqlite_path
    return ContactsService(SQLiteContactStore(db_path), config=config)


def show_duplicates(service, args):
    """List duplicate sets for an account."""
    sets = service.get_duplicates(args.account)

    if not sets:
        console.print("✅ No duplicates found")
        return 0

    table = Table(
        title=f"Duplicate sets ({len(sets)})",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("#", justify="right", style="dim", width=4)
    table.add_column("Type", style="cyan", no_wrap=True)
    table.add_column("Similarity", justify="right", style="green")
    table.add_column("Contacts")

    for i, duplicate_set in enumerate(sets, 1):
        members = "\n".join(
            f"{c.id}  {c.phone}  {c.name or '-'}" for c in duplicate_set.contacts
        )
        table.add_row(str(i), duplicate_set.type, f"{duplicate_set.similarity:.3f}", members)

    console.print(table)
    return 0


def dismiss(service, args):
    """Mark two contacts as not duplicates."""
    dismissal = service.dismiss_duplicate(
        args.account, args.contact_a, args.contact_b, Actor(id=args.account)
    )
    console.print(f"🚫 Dismissed pair {dismissal.contact_id_1} / {dismissal.contact_id_2}")
    return 0


def merge(service, args):
    """Merge contacts into one."""
    merge_data = MergeData(
        primary_contact_id=args.primary,
        name=args.name,
        preserve_tags=not args.no_tags,
        preserve_groups=not args.no_groups,
    )
    contact = service.merge_contacts(
        args.account, args.contact_ids, merge_data, Actor(id=args.account)
    )
    console.print(f"🔄 Merged {len(args.contact_ids)} contacts into {contact.id}")
    console.print(f"   📞 {contact.phone}  👤 {contact.name or '-'}")
    console.print(f"   🏷️  {len(contact.tags)} tags, {len(contact.groups)} groups")
    return 0


def load_records(path: str) -> List[RawContactRecord]:
    """Read raw contacts from a JSON list or a {"contacts": [...]} document."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("contacts", [])
    return [RawContactRecord.model_validate(item) for item in data]


def import_contacts(service, args):
    """Import contacts from a JSON export."""
    records = load_records(args.file)
    console.print(f"📥 Importing {len(records)} records from {args.file}")

    result = service.import_from_whatsapp(args.account, args.tenant, records, Actor(id=args.account))

    table = Table(box=box.SIMPLE_HEAD, show_header=True, header_style="bold")
    table.add_column("Added", justify="right", style="green")
    table.add_column("Updated", justify="right", style="yellow")
    table.add_column("Unchanged", justify="right")
    table.add_column("Skipped", justify="right", style="dim")
    table.add_row(str(result.added), str(result.updated), str(result.unchanged), str(result.skipped))
    console.print(table)
    return 0


def show_stats(service, args):
    """Show contact statistics for an account."""
    stats = service.get_stats(args.account)

    table = Table(title="Contact statistics", box=box.ROUNDED, header_style="bold cyan")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Total", str(stats.total))
    table.add_row("With name", str(stats.with_name))
    table.add_row("Without name", str(stats.without_name))
    table.add_row("Tags", str(stats.total_tags))
    console.print(table)
    return 0


def generate_config(args):
    """Generate configuration template."""
    manager = ConfigManager()
    if args.output:
        manager.save_template(args.output)
    else:
        print(json.dumps(manager.DEFAULT_CONFIG, indent=2))
    return 0


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="contactcore - detect, dismiss and merge duplicate contacts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List duplicate sets
  contactcore duplicates ACCOUNT_ID

  # Merge three contacts keeping the second one
  contactcore merge ACCOUNT_ID ID_A ID_B ID_C --primary ID_B

  # Import an address book export
  contactcore import ACCOUNT_ID TENANT_ID contacts.json
""",
    )
    parser.add_argument("-c", "--config", help="Path to configuration file")
    parser.add_argument("--db", help="SQLite database path (overrides configuration)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    duplicates_parser = subparsers.add_parser("duplicates", help="List duplicate sets")
    duplicates_parser.add_argument("account", help="Account id")

    dismiss_parser = subparsers.add_parser("dismiss", help="Mark two contacts as not duplicates")
    dismiss_parser.add_argument("account", help="Account id")
    dismiss_parser.add_argument("contact_a", help="First contact id")
    dismiss_parser.add_argument("contact_b", help="Second contact id")

    merge_parser = subparsers.add_parser("merge", help="Merge duplicate contacts")
    merge_parser.add_argument("account", help="Account id")
    merge_parser.add_argument("contact_ids", nargs="+", help="Contacts to merge")
    merge_parser.add_argument("--primary", help="Contact that survives the merge")
    merge_parser.add_argument("--name", help="Name for the merged contact")
    merge_parser.add_argument("--no-tags", action="store_true", help="Do not carry tags over")
    merge_parser.add_argument("--no-groups", action="store_true", help="Do not carry groups over")

    import_parser = subparsers.add_parser("import", help="Import contacts from a JSON file")
    import_parser.add_argument("account", help="Account id")
    import_parser.add_argument("tenant", help="Tenant id")
    import_parser.add_argument("file", help="JSON file with raw contact records")

    stats_parser = subparsers.add_parser("stats", help="Show contact statistics")
    stats_parser.add_argument("account", help="Account id")

    config_parser = subparsers.add_parser("generate-config", help="Generate configuration template")
    config_parser.add_argument("-o", "--output", help="Save to file (default: print to stdout)")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "duplicates": show_duplicates,
        "dismiss": dismiss,
        "merge": merge,
        "import": import_contacts,
        "stats": show_stats,
    }

    if args.command == "generate-config":
        return generate_config(args)

    service = None
    try:
        service = build_service(args)
        return commands[args.command](service, args)
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted by user")
        return 1
    except ContactsError as e:
        console.print(f"\n❌ {e.code}: {e.message}")
        return 1
    except Exception as e:
        print(f"\n❌ Error: {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1
    finally:
        if service is not None:
            service.store.close()


if __name__ == "__main__":
    sys.exit(main())
