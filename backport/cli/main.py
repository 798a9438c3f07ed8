# The MIT License (MIT)
# Copyright © 2025 Entrius

"""
Backport CLI - Main entry point

Usage:
    backport [run] ...       - Backport commits (alias: r, default command)
    backport config          - Show the effective configuration
    backport config init     - Create the global config file
"""

import sys

import click
from dotenv import load_dotenv
from rich.table import Table

from backport import __version__
from backport.cli.run import console, print_error, run_command
from backport.config import find_project_config, get_global_config, maybe_create_global_config
from backport.constants import BACKPORT_DIR, GLOBAL_CONFIG_FILE
from backport.errors import BackportError

DEFAULT_COMMAND = 'run'
SECRET_KEYS = ('accessToken',)


class AliasGroup(click.Group):
    """Click Group that supports command aliases and falls back to a default command."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._aliases = {}  # alias -> canonical name

    def add_alias(self, name, alias):
        """Register an alias for an existing command."""
        self._aliases[alias] = name

    def get_command(self, ctx, cmd_name):
        # Resolve alias to canonical name
        canonical = self._aliases.get(cmd_name, cmd_name)
        return super().get_command(ctx, canonical)

    def parse_args(self, ctx, args):
        # `backport --sha abc` means `backport run --sha abc`
        if not args or (args[0].startswith('-') and args[0] not in ('-h', '--help', '--version')):
            args = [DEFAULT_COMMAND, *args]
        return super().parse_args(ctx, args)

    def format_commands(self, ctx, formatter):
        """Write the help text, appending aliases to command descriptions."""
        # Build reverse map: canonical -> list of aliases
        alias_map = {}
        for alias, canonical in self._aliases.items():
            alias_map.setdefault(canonical, []).append(alias)

        commands = []
        for subcommand in self.list_commands(ctx):
            cmd = self.commands.get(subcommand)
            if cmd is None or cmd.hidden:
                continue
            help_text = cmd.get_short_help_str(limit=150)
            aliases = alias_map.get(subcommand)
            if aliases:
                alias_str = ', '.join(sorted(aliases))
                subcommand = f'{subcommand}, {alias_str}'
            commands.append((subcommand, help_text))

        if commands:
            with formatter.section('Commands'):
                formatter.write_dl(commands)


@click.group(cls=AliasGroup, context_settings={'help_option_names': ['-h', '--help']})
@click.version_option(version=__version__, prog_name='backport')
def cli():
    """Backport CLI - Cherry-pick merged commits onto release branches and open pull requests"""
    pass


def _mask(value) -> str:
    str_val = str(value)
    if len(str_val) <= 8:
        return '***' if str_val else '(not set)'
    return str_val[:4] + '...' + str_val[-4:]


@click.group(name='config', invoke_without_command=True)
@click.pass_context
def config_group(ctx):
    """Show the backport configuration.

    \b
    Subcommands:
        init    Create the global config file if it does not exist
    """
    # If no subcommand, show config
    if ctx.invoked_subcommand is None:
        show_config()


def show_config():
    """Show the global configuration and the project config in use"""
    console.print('\n[bold]Backport Configuration[/bold]\n')

    try:
        config = get_global_config(BACKPORT_DIR)
    except BackportError as e:
        print_error(str(e))
        sys.exit(1)

    table = Table(show_header=True)
    table.add_column('Setting', style='cyan')
    table.add_column('Value', style='green')

    for key, value in config.items():
        if key == 'projects':
            value = ', '.join(p.get('upstream', '?') for p in value) or '(none)'
        elif key in SECRET_KEYS:
            value = _mask(value)
        table.add_row(key, str(value))

    console.print(table)
    console.print(f'\n[dim]Global config: {GLOBAL_CONFIG_FILE}[/dim]')
    project_config = find_project_config()
    console.print(f'[dim]Project config: {project_config or "(none)"}[/dim]\n')


@config_group.command('init')
def config_init():
    """Create ~/.backport/config.json with an empty access token and username."""
    if maybe_create_global_config(GLOBAL_CONFIG_FILE):
        console.print(f'[green]Created {GLOBAL_CONFIG_FILE}[/green]')
        console.print('[dim]Fill in "accessToken" and "username" before running backport[/dim]')
    else:
        console.print(f'[yellow]{GLOBAL_CONFIG_FILE} already exists[/yellow]')


cli.add_command(run_command)
cli.add_alias('run', 'r')
cli.add_command(config_group)


def main():
    """Main entry point for the CLI"""
    load_dotenv()
    cli()


if __name__ == '__main__':
    main()
