"""Console rendering of import results and generated statements."""
from typing import List, Optional

import sqlparse
from rich import box
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from bulkimport.domain.models import ImportResult

def _format_time(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{int(minutes)}m {int(seconds)}s"
    hours, minutes = divmod(minutes, 60)
    return f"{int(hours)}h {int(minutes)}m {int(seconds)}s"

def format_sql(statement: str) -> str:
    return sqlparse.format(statement, reindent=True, keyword_case="upper")

def show_result(result: ImportResult, console: Optional[Console] = None) -> None:
    """Print the summary of one import run."""
    console = console or Console()
    job = result.job

    table = Table(title=f"Import Result: {job.source_table}", box=box.ROUNDED)
    table.add_column("Attribute", style="cyan")
    table.add_column("Value", style="yellow")

    table.add_row("Source", f"{job.source_connection}.{job.source_table}")
    table.add_row("Target", f"{job.target_connection}.{result.target_table}")
    table.add_row("Columns", str(len(result.table.fields)))
    table.add_row("Indexes", str(len(result.table.indexes)))
    table.add_row("Lines Staged", str(result.lines_created))
    table.add_row("Rows Inserted", str(result.lines_inserted))
    if result.lines_inserted != result.lines_created:
        table.add_row("Difference", f"[red]{result.lines_inserted - result.lines_created:+d}")
    table.add_row("Staging File", result.temp_file)
    table.add_row("Duration", _format_time(result.duration))

    console.print(table)

def show_statements(statements: List[str], console: Optional[Console] = None) -> None:
    """Print statements one after the other, formatted and highlighted."""
    console = console or Console()
    for statement in statements:
        console.print(Syntax(format_sql(statement) + ";", "sql", word_wrap=True))
        console.print()
