"""
SpendScope CLI - Command-line interface.

Usage:
    spendscope init [dir]                       # Create a starter budget folder
    spendscope run [config]                     # Load statements and print the dashboard summary
    spendscope run --from 2024-01-01 --to 2024-01-31 --format json --period weekly
    spendscope classify "UBER* EATS CANADA"     # Show which rule categorizes a description
    spendscope categories                       # List rules in evaluation order
    spendscope export [config] -o out.csv       # Export the (filtered) transactions
"""

import argparse
import os
import sys
from datetime import date

from . import __version__
from .analyzer import (
    PERIODS,
    AggregationFilter,
    analyze_transactions,
    export_csv,
    export_filename,
    export_json,
    print_summary,
)
from .category_engine import CategoryParseError, default_engine, load_categories_file
from .config_loader import DEFAULT_SETTINGS_FILE, load_config
from .logging_setup import configure_logging, get_logger
from .merchant_utils import build_aliases
from .session import SpendingSession

logger = get_logger(__name__)


# Terminal color support
def _supports_color():
    """Check if the terminal supports color output."""
    if not sys.stdout.isatty():
        return False
    if os.environ.get('NO_COLOR'):
        return False
    if os.environ.get('FORCE_COLOR'):
        return True
    term = os.environ.get('TERM', '')
    return term != 'dumb'


class _Colors:
    """ANSI color codes with automatic detection."""
    def __init__(self):
        if _supports_color():
            self.RESET = '\033[0m'
            self.BOLD = '\033[1m'
            self.DIM = '\033[2m'
            self.GREEN = '\033[32m'
            self.YELLOW = '\033[33m'
        else:
            self.RESET = ''
            self.BOLD = ''
            self.DIM = ''
            self.GREEN = ''
            self.YELLOW = ''


C = _Colors()


STARTER_SETTINGS = '''# SpendScope Settings
title: "Spending Analysis"

# Statement files (CSV: date, description, debit, credit)
# Paths are relative to the folder that contains config/
data_sources:
  # - name: Visa
  #   file: data/visa-{year}.csv

currency_format: "${{amount}}"

# Optional: replace the built-in category rules with your own YAML schema
# categories_file: categories.yaml

# Optional: extra merchant name normalizations (checked before built-ins)
# merchant_aliases:
#   - match: netflix
#     name: Netflix
#   - match: [costco, gas]
#     name: Costco Gas
'''


def find_config_dir():
    """Find the config directory.

    Resolution order:
    1. SPENDSCOPE_CONFIG environment variable (if set and exists)
    2. ./config
    3. ./spendscope/config

    Returns None if no config directory is found.
    """
    env_config = os.environ.get('SPENDSCOPE_CONFIG')
    if env_config:
        env_path = os.path.abspath(env_config)
        if os.path.isdir(env_path):
            return env_path

    for candidate in ('config', os.path.join('spendscope', 'config')):
        path = os.path.abspath(candidate)
        if os.path.isdir(path):
            return path

    return None


def init_config(target_dir):
    """Initialize a new budget directory with starter files."""
    config_dir = os.path.join(target_dir, 'config')
    data_dir = os.path.join(target_dir, 'data')

    os.makedirs(config_dir, exist_ok=True)
    os.makedirs(data_dir, exist_ok=True)

    files_created = []
    files_skipped = []

    settings_path = os.path.join(config_dir, 'settings.yaml')
    if not os.path.exists(settings_path):
        with open(settings_path, 'w', encoding='utf-8') as f:
            f.write(STARTER_SETTINGS.format(year=date.today().year))
        files_created.append('config/settings.yaml')
    else:
        files_skipped.append('config/settings.yaml')

    # Keep statements out of version control
    gitignore_path = os.path.join(target_dir, '.gitignore')
    if not os.path.exists(gitignore_path):
        with open(gitignore_path, 'w', encoding='utf-8') as f:
            f.write('# SpendScope - Ignore sensitive data\ndata/\n*.csv\n')
        files_created.append('.gitignore')
    else:
        files_skipped.append('.gitignore')

    return files_created, files_skipped


def _fail(message, hint=None):
    print(f"Error: {message}", file=sys.stderr)
    if hint:
        print(f"\n{hint}", file=sys.stderr)
    sys.exit(1)


def _parse_iso_date(value):
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def _resolve_config(args, required=True):
    """Load the config named by args.config (or auto-detected)."""
    config_dir = os.path.abspath(args.config) if args.config else find_config_dir()

    if not config_dir or not os.path.isdir(config_dir):
        if not required:
            return None
        _fail("Config directory not found.",
              "Looked for: ./config and ./spendscope/config\n\n"
              "Run 'spendscope init' to create a new budget directory.")

    if not required and not os.path.exists(os.path.join(config_dir, args.settings)):
        return None

    try:
        return load_config(config_dir, args.settings)
    except (FileNotFoundError, ValueError) as e:
        _fail(str(e))


def _build_engine(config):
    if config and config.get('categories_file'):
        try:
            return load_categories_file(config['categories_file'])
        except CategoryParseError as e:
            _fail(f"{config['categories_file']}: {e}")
    return default_engine()


def _setup_logging(args, config=None):
    level = 'DEBUG' if getattr(args, 'verbose', 0) else (config or {}).get('log_level')
    configure_logging(level)


def _filter_from_args(args):
    return AggregationFilter(
        date_from=args.date_from,
        date_to=args.date_to,
        search=args.search or '',
        category=args.category or '',
    )


def _load_session(args):
    """Load config, categories and every data source into a session."""
    config = _resolve_config(args)
    _setup_logging(args, config)
    engine = _build_engine(config)
    aliases = build_aliases(config['merchant_aliases'])
    quiet = getattr(args, 'quiet', False)

    data_sources = config['data_sources']
    if not data_sources:
        _fail("No data sources configured",
              f"Edit {config['_config_dir']}/{args.settings} to add your statement files.\n\n"
              "Example:\n"
              "  data_sources:\n"
              "    - name: Visa\n"
              "      file: data/visa.csv")

    logger.info("Using config %s with %d categories", config['_config_dir'], len(engine.rules))
    session = SpendingSession(engine)
    for source in data_sources:
        filepath = source['_filepath']
        # Ids come from the resolved path; names are display-only and may repeat
        added, failures = session.load_files([(filepath, filepath)])
        if quiet:
            continue
        if failures:
            print(f"  {source['name']}: {C.YELLOW}could not read{C.RESET} {source['file']} ({failures[0][1]})")
        else:
            print(f"  {source['name']}: {added} transactions")

    if not session.transactions:
        _fail("No transactions found")

    session.apply_filter(_filter_from_args(args))
    return config, session, aliases


def cmd_init(args):
    """Handle the 'init' subcommand."""
    _setup_logging(args)
    target_dir = os.path.abspath(args.dir)
    rel_target = os.path.relpath(target_dir)

    print(f"Initializing budget directory: {C.BOLD}{rel_target}{C.RESET}")
    print()

    created, skipped = init_config(target_dir)
    all_files = sorted([(f, True) for f in created] + [(f, False) for f in skipped])
    for f, was_created in all_files:
        if was_created:
            print(f"  {C.GREEN}✓{C.RESET} {f}")
        else:
            print(f"  {C.YELLOW}→{C.RESET} {C.DIM}{f} (exists){C.RESET}")

    print()
    print(f"Add statement files to {os.path.join(rel_target, 'data')} and list them in "
          f"{os.path.join(rel_target, 'config', 'settings.yaml')}, then run "
          f"{C.GREEN}spendscope run{C.RESET}.")


def cmd_run(args):
    """Handle the 'run' subcommand."""
    if args.format == 'json':
        args.quiet = True

    config, session, aliases = _load_session(args)

    if not args.quiet:
        print(f"\nTotal: {len(session.transactions)} transactions, "
              f"{len(session.filtered)} after filters")
        print()

    stats = analyze_transactions(session.filtered, session.engine, aliases=aliases, period=args.period)

    if args.format == 'json':
        print(export_json(stats))
    else:
        print_summary(stats, title=config['title'], currency_format=config['currency_format'])


def cmd_export(args):
    """Handle the 'export' subcommand."""
    args.quiet = True
    _, session, _ = _load_session(args)

    if not session.filtered:
        _fail("Nothing to export (no transactions match the filters)")

    output = args.output or export_filename()
    with open(output, 'w', encoding='utf-8', newline='') as f:
        f.write(export_csv(session.filtered))
        f.write('\n')
    print(f"Exported {len(session.filtered)} transactions to {output}")


def cmd_classify(args):
    """Handle the 'classify' subcommand - explain a single description."""
    config = _resolve_config(args, required=False)
    _setup_logging(args, config)
    engine = _build_engine(config)

    description = ' '.join(args.description)
    result = engine.explain(description)

    print(f"Description: {description}")
    print(f"Category:    {C.BOLD}{result.category}{C.RESET}")
    display = engine.display_category(result.category)
    if display != result.category:
        print(f"Group:       {display}")
    if result.rule:
        print(f"Matched by:  {result.match_type} '{result.matcher.source}' "
              f"(priority {result.rule.priority})")
    else:
        print("Matched by:  no rule (default)")
    for rule_name, pattern in result.excluded:
        print(f"  {C.DIM}skipped {rule_name}: excluded by '{pattern}'{C.RESET}")


def cmd_categories(args):
    """Handle the 'categories' subcommand - list rules in evaluation order."""
    config = _resolve_config(args, required=False)
    _setup_logging(args, config)
    engine = _build_engine(config)

    print(f"{'Priority':>8}  {'Category':<28} {'Group':<14} {'Patterns':>8} {'Keywords':>8}")
    print("-" * 72)
    for rule in engine.rules_by_priority():
        group = engine.display_category(rule.name)
        group = group if group != rule.name else ''
        print(f"{rule.priority:>8}  {rule.icon} {rule.name[:26]:<26} {group:<14} "
              f"{len(rule.patterns):>8} {len(rule.keywords):>8}")


def _add_config_args(parser):
    parser.add_argument(
        '--settings', '-s',
        default=DEFAULT_SETTINGS_FILE,
        help='Settings file name (default: settings.yaml)'
    )


def _add_filter_args(parser):
    parser.add_argument('--from', dest='date_from', type=_parse_iso_date,
                        help='Only include transactions on or after this date (YYYY-MM-DD)')
    parser.add_argument('--to', dest='date_to', type=_parse_iso_date,
                        help='Only include transactions on or before this date (YYYY-MM-DD)')
    parser.add_argument('--search', help='Case-insensitive text to find in description or category')
    parser.add_argument('--category', help='Only include this exact category')


def build_parser():
    parser = argparse.ArgumentParser(
        prog='spendscope',
        description='Categorize credit card spending and summarize it.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--version', action='version', version=f'spendscope {__version__}')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', title='commands', metavar='<command>')

    init_parser = subparsers.add_parser(
        'init',
        help='Set up a new budget folder with config files'
    )
    init_parser.add_argument('dir', nargs='?', default='.',
                             help='Directory to initialize (default: current directory)')

    run_parser = subparsers.add_parser(
        'run',
        help='Load statements, categorize them, and print the spending summary'
    )
    run_parser.add_argument('config', nargs='?', help='Path to config directory (default: ./config)')
    _add_config_args(run_parser)
    _add_filter_args(run_parser)
    run_parser.add_argument('--format', '-f', choices=['summary', 'json'], default='summary',
                            help='Output format: summary (text, default) or json')
    run_parser.add_argument('--period', '-p', choices=PERIODS, default='daily',
                            help='Bucket size for spending over time (default: daily)')
    run_parser.add_argument('--quiet', '-q', action='store_true', help='Minimal output')

    export_parser = subparsers.add_parser(
        'export',
        help='Write the (filtered) transactions to a CSV file'
    )
    export_parser.add_argument('config', nargs='?', help='Path to config directory (default: ./config)')
    _add_config_args(export_parser)
    _add_filter_args(export_parser)
    export_parser.add_argument('--output', '-o',
                               help='Output file (default: spending-export-M-D-YYYY.csv)')

    classify_parser = subparsers.add_parser(
        'classify',
        help='Show the category and deciding rule for a description'
    )
    classify_parser.add_argument('description', nargs='+', help='Transaction description')
    classify_parser.add_argument('--config', '-c', help='Config directory (for a custom categories_file)')
    _add_config_args(classify_parser)

    categories_parser = subparsers.add_parser(
        'categories',
        help='List category rules in evaluation order'
    )
    categories_parser.add_argument('--config', '-c', help='Config directory (for a custom categories_file)')
    _add_config_args(categories_parser)

    return parser


def main(argv=None):
    """Main entry point for spendscope CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handlers = {
        'init': cmd_init,
        'run': cmd_run,
        'export': cmd_export,
        'classify': cmd_classify,
        'categories': cmd_categories,
    }
    handlers[args.command](args)


if __name__ == '__main__':
    main()
