import json
import logging
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from .. import __version__
from ..compiler import get_compiler
from ..config import BenchmarkProfile
from ..errors import CartEVMError, CompilationError
from ..generator import CodeGenerator
from ..report import render_section, rows_to_json, section_rows
from ..runner import BenchmarkRunner
from ..step import STEPS, categories, get_step

console = Console()


def _configure_logging(verbose: bool):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@click.group()
@click.version_option(version=__version__, prog_name="CartEVM")
def cli():
    """CartEVM - per-opcode gas and timing benchmarks for the EVM"""
    pass


@cli.command()
@click.option('--gas-limit', type=int, default=None, help="Gas the generated loop is sized to spend")
@click.option('--gas-multiplier', type=int, default=None, help="Initial gas = gas limit x multiplier")
@click.option('--size-limit', type=int, default=None, help="Maximum generated bytecode size")
@click.option('--category', 'categories_', multiple=True, help="Only run this category (repeatable)")
@click.option('--step', 'steps', multiple=True, help="Only run this step (repeatable)")
@click.option('--compiler', type=click.Choice(['asm', 'solc']), default='asm', show_default=True)
@click.option('--json', 'json_path', type=click.Path(dir_okay=False, allow_dash=True), default=None,
              help="Write a JSON report to this file ('-' for stdout)")
@click.option('-v', '--verbose', is_flag=True, help="Enable debug logging")
def run(gas_limit, gas_multiplier, size_limit, categories_, steps, compiler, json_path, verbose):
    """Run the benchmark sweep"""
    _configure_logging(verbose)
    try:
        profile = BenchmarkProfile.from_env(
            gas_limit=gas_limit,
            gas_multiplier=gas_multiplier,
            size_limit=size_limit,
            categories=list(categories_) or None,
            steps=list(steps) or None,
            compiler=compiler,
            verbose=verbose,
        )
        runner = BenchmarkRunner(profile)
        if not runner.selected_steps():
            console.print("[yellow]No steps match the given filters[/yellow]")
            return

        sections = []
        for section in runner.run():
            sections.append(section)
            if json_path != '-':
                render_section(console, section.title, section_rows(section), section.cumulative)
    except (CartEVMError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        sys.exit(1)

    if json_path == '-':
        click.echo(rows_to_json(sections))
    elif json_path:
        with open(json_path, 'w') as f:
            f.write(rows_to_json(sections))
        console.print(f"JSON report written to {json_path}")


@cli.command(name='list')
@click.option('--category', default=None, help="Only list this category")
def list_steps(category):
    """List the operations in the step catalog"""
    if category and category not in categories():
        console.print(f"[bold red]Unknown category:[/bold red] {category}")
        console.print(f"Known categories: {', '.join(categories())}")
        sys.exit(1)

    table = Table(title="Steps")
    table.add_column("Name", style="cyan")
    table.add_column("Category", style="green")
    table.add_column("Opcode", style="yellow")
    table.add_column("Operands")

    for step in STEPS:
        if category and step.category != category:
            continue
        operands = ", ".join(hex(a) if isinstance(a, int) else a for a in step.args)
        table.add_row(step.display_name, step.category, f"0x{step.opcode:02x}", operands)

    console.print(table)


@cli.command(name='compile')
@click.argument('step_name')
@click.option('--gas-limit', type=int, default=None)
@click.option('--size-limit', type=int, default=None)
@click.option('--compiler', type=click.Choice(['asm', 'solc']), default='asm', show_default=True)
def compile_step(step_name, gas_limit, size_limit, compiler):
    """Show the generated source and bytecode for one step"""
    try:
        profile = BenchmarkProfile.from_env(gas_limit=gas_limit, size_limit=size_limit)
        step = get_step(step_name)
        chosen = get_compiler(compiler)
        generated = CodeGenerator(profile.gas_limit, profile.size_limit, dialect=chosen.dialect).generate(step)
        bytecode = chosen.compile(generated.source)
    except CompilationError as e:
        console.print(f"[bold red]Compilation failed:[/bold red] {str(e)}")
        sys.exit(1)
    except (CartEVMError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        sys.exit(1)

    console.print(Panel.fit(
        Syntax(generated.source, "nasm" if generated.dialect == "asm" else "javascript", line_numbers=True),
        title=f"[bold blue]{step.display_name}[/bold blue] ({generated.total_loops} loops)",
        border_style="blue",
    ))
    click.echo(bytecode)


def main():
    cli()


if __name__ == '__main__':
    main()
