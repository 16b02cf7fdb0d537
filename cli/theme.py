"""Unified Rich theme and reusable UI helpers for the novelmem CLI."""

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.theme import Theme

from memory.assembler import ContextPackage
from memory.conflicts import ConflictWarning
from models.bank import MemoryBank
from models.character import is_placeholder
from models.enums import RoleTag

NOVELMEM_THEME = Theme({
    "app.title": "bold",
    "success": "green",
    "warning": "yellow",
    "error": "red",
    "info": "blue",
    "muted": "dim",
    "accent": "cyan",
    "stat.label": "dim",
    "stat.value": "bold",
    "chapter.num": "blue",
    "character.name": "bold cyan",
})

_ROLE_STYLES = {
    RoleTag.PROTAGONIST: "bold green",
    RoleTag.ANTAGONIST: "bold red",
    RoleTag.MAJOR: "cyan",
    RoleTag.SUPPORT: "white",
    RoleTag.CAMEO: "dim",
}


def get_console() -> Console:
    return Console(theme=NOVELMEM_THEME)


def app_header(title: str = "novelmem") -> Rule:
    return Rule(title=f"[bold]{title}[/]", style="dim")


def command_panel(title: str, fields: dict[str, str]) -> Panel:
    """Panel listing command parameters as label: value lines."""
    body = "\n".join(f"  [stat.label]{label}:[/] [stat.value]{value}[/]" for label, value in fields.items())
    return Panel(body, title=f"[bold]{title}[/]", box=box.ROUNDED, border_style="dim", padding=(0, 2))


def success_panel(title: str, body: str) -> Panel:
    return Panel(body, title=f"[success]{title}[/]", box=box.ROUNDED, border_style="green", padding=(0, 2))


def bank_summary_panel(bank: MemoryBank) -> Panel:
    stats = bank.stats()
    protagonist = bank.protagonist()
    body = (
        f"  [stat.label]版本:[/] [stat.value]{bank.version}[/]  "
        f"[muted]|[/]  [stat.label]最后合并:[/] [stat.value]{bank.last_updated_chapter or '-'}[/]  "
        f"[muted]|[/]  [stat.label]主角:[/] [character.name]{protagonist.name if protagonist else '-'}[/]\n"
        f"  [stat.label]角色:[/] [stat.value]{stats['characters']}[/]  "
        f"[muted]|[/]  [stat.label]龙套:[/] [stat.value]{stats['cameos']}[/]  "
        f"[muted]|[/]  [stat.label]实体:[/] [stat.value]{stats['world_entities']}[/]  "
        f"[muted]|[/]  [stat.label]词条:[/] [stat.value]{stats['world_terms']}[/]  "
        f"[muted]|[/]  [stat.label]伏笔:[/] [stat.value]{stats['foreshadowing']}[/]  "
        f"[muted]|[/]  [stat.label]概括:[/] [stat.value]{stats['summaries']}[/]"
    )
    return Panel(
        body,
        title=f"[bold]记忆库[/] [muted](ID: {bank.novel_id})[/]",
        box=box.ROUNDED,
        border_style="dim",
        padding=(0, 2),
    )


def character_table(bank: MemoryBank, limit: int = 20) -> Table:
    table = Table(box=box.ROUNDED, border_style="dim", show_header=True, padding=(0, 1))
    table.add_column("角色", style="character.name")
    table.add_column("类型")
    table.add_column("状态", style="muted")
    table.add_column("出场", justify="right")
    table.add_column("影响力", justify="right")
    table.add_column("简介")

    profiles = sorted(bank.characters.values(), key=lambda p: (-p.importance, p.name))
    for p in profiles[:limit]:
        hook = "" if is_placeholder(p.hook_line) else p.hook_line
        if len(hook) > 30:
            hook = hook[:30] + "..."
        span = f"{p.first_appearance or '-'}-{p.last_appearance or '-'} ({p.appearance_count})"
        influence = f"{p.influence_score:.0f}" if p.influence_score is not None else "-"
        style = _ROLE_STYLES.get(p.role_tag, "white")
        table.add_row(p.name, f"[{style}]{p.role_tag.value}[/]", p.status, span, influence, hook)

    if len(profiles) > limit:
        table.add_row(f"[muted]+{len(profiles) - limit} more[/]", "", "", "", "", "")
    return table


def segment_table(package: ContextPackage) -> Table:
    meta = package.metadata
    table = Table(
        title=f"第{package.chapter}章上下文 · {meta.total_chars:,} 字 · ~{meta.estimated_tokens:,} tokens",
        box=box.ROUNDED,
        border_style="dim",
    )
    table.add_column("#", style="chapter.num", justify="right")
    table.add_column("段落")
    table.add_column("字数", justify="right")

    for i, segment in enumerate(package.segments, 1):
        size = f"{segment.chars:,}"
        if segment.kind.value in meta.oversized_segments:
            size = f"[warning]{size}[/]"
        table.add_row(str(i), segment.kind.value, size)
    return table


def conflict_table(warnings: list[ConflictWarning]) -> Table:
    table = Table(box=box.ROUNDED, border_style="yellow", show_header=True)
    table.add_column("类型", style="warning")
    table.add_column("对象", style="accent")
    table.add_column("章节", justify="right")
    table.add_column("说明")
    for w in warnings:
        table.add_row(w.kind.value, w.subject, str(w.chapter or "-"), w.message)
    return table
