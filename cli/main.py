"""CLI entry point: novelmem 长篇小说记忆引擎。

用法：
  novelmem show                    列出所有有记忆的小说
  novelmem show -n 1               查看某部小说的记忆库
  novelmem ingest -n 1 -c 5 -f ch5.txt
  novelmem context -n 1 -c 6 -p plan.json
  novelmem conflicts -n 1
  novelmem reclassify -n 1 --name 王五 --role CAMEO
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

# Ensure UTF-8 output on Windows to avoid GBK encoding errors with Rich
if sys.platform == "win32":
    os.environ.setdefault("PYTHONIOENCODING", "utf-8")

import click
from rich.table import Table

from agents.memory_manager_agent import MemoryManagerAgent
from cli.theme import (
    get_console,
    app_header,
    command_panel,
    success_panel,
    bank_summary_panel,
    character_table,
    segment_table,
    conflict_table,
)
from config.exceptions import NovelMemoryError
from config.logging_config import setup_logging
from config.settings import Settings
from memory.assembler import ContextRequest, NovelInfo, VolumeInfo
from memory.extractor import Extractor, HeuristicExtractionStrategy
from memory.keywords import ChapterPlan
from memory.recall_index import SummaryRecallIndex
from memory.store import MemoryStore
from models.batch import UpdateBatch
from models.database import Database
from models.enums import RoleTag
from tools.text_utils import count_chinese_chars

console = get_console()


def _init_logging(verbose: bool):
    level = logging.DEBUG if verbose else logging.INFO
    settings = Settings()
    setup_logging(level=level, log_dir=settings.log_dir, console_enabled=verbose)


def _make_agent(settings: Settings, heuristic: bool = False, recall: bool = True) -> MemoryManagerAgent:
    db = Database(settings.sqlite_db_path)
    extractor = Extractor(HeuristicExtractionStrategy(), settings) if heuristic else None
    recall_index = SummaryRecallIndex(settings.chroma_persist_dir) if recall and settings.recall_top_k > 0 else None
    return MemoryManagerAgent(
        store=MemoryStore(db),
        settings=settings,
        extractor=extractor,
        recall_index=recall_index,
    )


def _read_json(path: str) -> dict:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[error]无法读取 {path}: {e}[/]")
        sys.exit(1)
    if not isinstance(data, dict):
        console.print(f"[error]{path} 必须是一个 JSON 对象[/]")
        sys.exit(1)
    return data


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """novelmem: 长篇小说记忆与上下文组装引擎

    \b
    每章写完后用 ingest 合并进记忆库，写下一章前用 context 组装上下文。
    """
    _init_logging(verbose)


# ---------------------------------------------------------------------------
# show command
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--novel-id", "-n", default=None, type=int, help="查看指定小说（不指定则列出所有）")
@click.option("--limit", "-l", default=20, help="最多显示的角色数")
def show(novel_id, limit):
    """查看记忆库内容。

    示例：
      novelmem show
      novelmem show -n 1
    """
    settings = Settings()
    db = Database(settings.sqlite_db_path)

    console.print(app_header())
    console.print()

    if novel_id is None:
        novels = db.list_novels()
        if not novels:
            console.print("[warning]暂无记忆记录。使用 [info]novelmem ingest[/] 合并章节。[/]")
            return
        table = Table(title="记忆库列表", border_style="dim")
        table.add_column("ID", style="chapter.num")
        table.add_column("版本", justify="right")
        table.add_column("最后合并章", justify="right")
        table.add_column("角色", justify="right")
        for nid in novels:
            versions = db.get_versions(nid)
            latest = versions[-1] if versions else {}
            table.add_row(
                str(nid),
                str(latest.get("version", 0)),
                str(latest.get("last_updated_chapter") or "-"),
                str(latest.get("stats", {}).get("characters", 0)),
            )
        console.print(table)
        return

    try:
        bank = db.load(novel_id)
    except NovelMemoryError as e:
        console.print(f"[error]{e}[/]")
        sys.exit(1)

    console.print(bank_summary_panel(bank))
    console.print()
    if bank.characters:
        console.print("[bold]角色[/]")
        console.print(character_table(bank, limit))
        console.print()
    if bank.cameos:
        names = "、".join(sorted(bank.cameos))
        console.print(f"[bold]龙套[/] [muted]({len(bank.cameos)})[/] {names}")
        console.print()
    open_hints = [f for f in bank.foreshadowing if f.is_open]
    if open_hints:
        console.print(f"[bold]未回收伏笔[/] [muted]({len(open_hints)})[/]")
        for f in open_hints:
            console.print(f"  [chapter.num]第{f.planted_chapter}章[/] {f.content} [muted]{f.status.value}[/]")


# ---------------------------------------------------------------------------
# ingest command
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--novel-id", "-n", required=True, type=int, help="小说ID")
@click.option("--chapter", "-c", required=True, type=int, help="章节号")
@click.option("--file", "-f", "text_file", default=None, type=click.Path(exists=True), help="章节正文文件")
@click.option("--batch", "-b", "batch_file", default=None, type=click.Path(exists=True),
              help="已抽取的更新 JSON（跳过抽取）")
@click.option("--heuristic", is_flag=True, help="使用规则抽取，不调用模型")
def ingest(novel_id, chapter, text_file, batch_file, heuristic):
    """把一章正文（或已抽取的更新）合并进记忆库。

    示例：
      novelmem ingest -n 1 -c 5 -f chapter5.txt
      novelmem ingest -n 1 -c 5 -b updates.json
    """
    if not text_file and not batch_file:
        console.print("[error]需要 --file 或 --batch 之一[/]")
        sys.exit(1)

    settings = Settings()
    agent = _make_agent(settings, heuristic=heuristic)

    console.print(app_header())
    console.print()
    console.print(command_panel("合并章节", {
        "小说": str(novel_id),
        "章节": f"第{chapter}章",
        "来源": batch_file or text_file,
        "抽取": "预抽取" if batch_file else ("规则" if heuristic else "模型"),
    }))
    console.print()

    if batch_file:
        batch = UpdateBatch.from_payload(_read_json(batch_file))
        coro = agent.apply_batch(novel_id, chapter, batch)
    else:
        text = Path(text_file).read_text(encoding="utf-8")
        console.print(f"[muted]正文 {count_chinese_chars(text):,} 字[/]")
        coro = agent.update_memory(novel_id, chapter, text)

    with console.status("[info]处理中...[/]"):
        result = asyncio.run(coro)

    if not result.ok:
        console.print(f"[error]合并失败: {result.error}[/]")
        sys.exit(1)

    if result.version is None:
        console.print("[warning]本章未抽取到任何记忆，记忆库未变化[/]")
        return

    report = result.report.summary()
    lines = [f"  [stat.label]{k}:[/] [stat.value]{v}[/]" for k, v in report.items() if v]
    if result.report.repeat:
        lines.append("  [warning]该章节此前已合并，计数未重复累加[/]")
    for conflict in result.report.rejected:
        lines.append(f"  [warning]拒绝: {conflict}[/]")
    console.print(success_panel(f"记忆库已更新 → v{result.version}", "\n".join(lines) or "（无变化）"))


# ---------------------------------------------------------------------------
# context command
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--novel-id", "-n", required=True, type=int, help="小说ID")
@click.option("--chapter", "-c", required=True, type=int, help="要写的章节号")
@click.option("--plan", "-p", "plan_file", default=None, type=click.Path(exists=True), help="章节计划 JSON")
@click.option("--novel", "novel_file", default=None, type=click.Path(exists=True),
              help="作品信息 JSON（title/genre/tags/outline/volume）")
@click.option("--previous", default=None, type=click.Path(exists=True), help="上一章正文文件")
@click.option("--direction", "-d", default="", help="创作者特殊要求")
@click.option("--words", "-w", default=None, type=int, help="目标字数")
@click.option("--output", "-o", default=None, type=click.Path(), help="把组装好的上下文写入文件")
def context(novel_id, chapter, plan_file, novel_file, previous, direction, words, output):
    """为下一章组装上下文并显示各段大小。

    示例：
      novelmem context -n 1 -c 6 -p plan6.json -o ctx6.md
    """
    settings = Settings()
    agent = _make_agent(settings)

    novel_data = _read_json(novel_file) if novel_file else {}
    volume_data = novel_data.get("volume")
    request = ContextRequest(
        novel=NovelInfo(
            title=novel_data.get("title", f"小说{novel_id}"),
            genre=novel_data.get("genre", ""),
            tags=novel_data.get("tags", ""),
            outline=novel_data.get("outline", ""),
        ),
        plan=ChapterPlan.from_dict(chapter, _read_json(plan_file) if plan_file else {}),
        volume=VolumeInfo(**volume_data) if isinstance(volume_data, dict) else None,
        previous_chapter_text=Path(previous).read_text(encoding="utf-8") if previous else "",
        user_direction=direction,
        estimated_words=words,
    )

    package = asyncio.run(agent.build_context(novel_id, request))

    console.print(app_header())
    console.print()
    console.print(segment_table(package))
    if package.metadata.warnings:
        console.print()
        console.print(conflict_table(package.metadata.warnings))

    if output:
        Path(output).write_text(package.as_prompt(), encoding="utf-8")
        console.print(f"\n[success]上下文已写入 {output}[/]")


# ---------------------------------------------------------------------------
# conflicts command
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--novel-id", "-n", required=True, type=int, help="小说ID")
@click.option("--chapter", "-c", default=None, type=int, help="以该章节为当前章节判断伏笔是否停滞")
def conflicts(novel_id, chapter):
    """检查记忆库中的一致性问题。"""
    settings = Settings()
    agent = _make_agent(settings, recall=False)
    warnings = asyncio.run(agent.detect_conflicts(novel_id, chapter))

    console.print(app_header())
    console.print()
    if not warnings:
        console.print("[success]未发现一致性问题[/]")
        return
    console.print(conflict_table(warnings))


# ---------------------------------------------------------------------------
# reclassify command
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--novel-id", "-n", required=True, type=int, help="小说ID")
@click.option("--name", required=True, help="角色名")
@click.option("--role", "-r", required=True, type=click.Choice([r.value for r in RoleTag], case_sensitive=False),
              help="新的角色类型")
def reclassify(novel_id, name, role):
    """调整角色分类（降为龙套、从龙套提升或更换角色类型）。"""
    settings = Settings()
    agent = _make_agent(settings, recall=False)
    try:
        outcome = asyncio.run(agent.reclassify(novel_id, name, RoleTag(role.upper())))
    except NovelMemoryError as e:
        console.print(f"[error]{e}[/]")
        sys.exit(1)
    console.print(f"[success]{outcome}[/]")


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
