#!/usr/bin/env python
"""
Equipment Tracker Manager

A command-line tool for working with tracked equipment data, including:
- Importing location event CSV files
- Generating placement, purchase and maintenance recommendations
- Listing devices, locations, movements and recommendations
- Implementing one or all recommendations
- Exporting data and resetting the database
"""

import argparse
import json
import logging
import sys

from .config import CONFIG, load_config
from .output import SORT_FILENAMES, export_movements, export_records
from .tracker import EquipmentTracker

logger = logging.getLogger(__name__)


def setup_logging(level=logging.INFO, log_file=None):
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                        handlers=handlers)


def import_file(tracker: EquipmentTracker, file_path: str):
    """Import a CSV file and print a summary."""
    result = tracker.import_csv(file_path)
    if not result['success']:
        logger.error(f"Import failed: {result['error']}")
        return 1

    print(f"\nImported {result['count']} movements from {file_path}")
    print(f"Duplicates skipped: {len(result['duplicates'])}")
    print(f"Rows with errors: {result['error_count']}")
    for error in result['errors'][:10]:
        where = f"line {error['line']}" if 'line' in error else error.get('device_id', 'file')
        print(f"  - {where}: {error['error']}")
    if result.get('unknown_locations'):
        print(f"Unknown locations: {', '.join(result['unknown_locations'])}")
    return 0


def view_records(tracker: EquipmentTracker, kind: str):
    """Print stored records of one kind."""
    getters = {
        'devices': tracker.get_devices,
        'locations': tracker.get_locations,
        'movements': tracker.get_movements,
        'recommendations': tracker.get_recommendations,
    }
    records = getters[kind]()

    print(f"\n{kind.capitalize()} ({len(records)}):")
    print("=" * 50)
    for record in records:
        if kind == 'recommendations':
            print(f"\n[{record['_id']}] {record['title']}")
            print(f"  {record['description']}")
            print(f"  Savings: {record['savings_text']}")
        else:
            print(json.dumps({k: v for k, v in record.items() if k != '_id'}, default=str))
    return 0


def generate(tracker: EquipmentTracker):
    result = tracker.generate_recommendations()
    if not result['success']:
        logger.warning(result['message'])
        return 1
    print(f"\nGenerated {len(result['recommendations'])} recommendations")
    for recommendation in result['recommendations']:
        print(f"  - [{recommendation['type']}] {recommendation['title']}")
    return 0


def apply(tracker: EquipmentTracker, recommendation_id: str):
    result = tracker.implement_recommendation(recommendation_id)
    if not result['success']:
        logger.warning(result['message'])
        return 1
    print(f"Implemented {result['implemented']} recommendation {recommendation_id}")
    return 0


def apply_all(tracker: EquipmentTracker):
    result = tracker.implement_all_recommendations()
    if not result['success']:
        logger.warning(result['message'])
        return 1
    print(result['message'])
    return 0


def export(tracker: EquipmentTracker, kind: str, file_path: str, sort_option: str, output_format: str):
    if kind == 'movements':
        path = export_movements(tracker.get_movements(), sort_option, file_path, output_format)
    else:
        getter = getattr(tracker, f'get_{kind}')
        path = export_records(getter(), file_path, output_format)
    print(f"Exported {kind} to {path}")
    return 0


def main(argv=None):
    """Main entry point for the equipment tracker manager."""
    parser = argparse.ArgumentParser(description="Hospital Equipment Tracker")
    parser.add_argument("--config", help="YAML file with configuration overrides")
    parser.add_argument("--data-dir", help="Directory holding the database files")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    import_parser = subparsers.add_parser("import", help="Import a location event CSV file")
    import_parser.add_argument("file", help="Path to the CSV file")

    subparsers.add_parser("generate", help="Generate recommendations")

    list_parser = subparsers.add_parser("list", help="List stored records")
    list_parser.add_argument("kind", choices=['devices', 'locations', 'movements', 'recommendations'])

    apply_parser = subparsers.add_parser("apply", help="Implement a recommendation")
    apply_parser.add_argument("recommendation_id", help="Recommendation ID")

    subparsers.add_parser("apply-all", help="Implement all recommendations")

    export_parser = subparsers.add_parser("export", help="Export stored records")
    export_parser.add_argument("kind", choices=['devices', 'locations', 'movements', 'recommendations'])
    export_parser.add_argument("file", help="Output file")
    export_parser.add_argument("--sort", choices=list(SORT_FILENAMES), default='default',
                               help="Ordering for movement exports")
    export_parser.add_argument("--format", choices=['csv', 'json'], default='csv')

    subparsers.add_parser("reset", help="Remove all stored data")

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    if args.command is None:
        parser.print_help()
        return 1

    config = load_config(args.config) if args.config else CONFIG
    tracker = EquipmentTracker(args.data_dir or config['DATABASE_DIR'], config)

    if args.command == "import":
        return import_file(tracker, args.file)
    elif args.command == "generate":
        return generate(tracker)
    elif args.command == "list":
        return view_records(tracker, args.kind)
    elif args.command == "apply":
        return apply(tracker, args.recommendation_id)
    elif args.command == "apply-all":
        return apply_all(tracker)
    elif args.command == "export":
        return export(tracker, args.kind, args.file, args.sort, args.format)
    elif args.command == "reset":
        print(tracker.reset_database()['message'])
        return 0

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
