"""Per-node job log summaries.

Job logs hold one section per command, each starting with a header line

    PROFILE_COMMAND <name>: <command line>

followed by task lines from the log_plays_v2 callback:

    <time> - <playbook> - <task name> - <task action> - <category> - <data>
"""

from dataclasses import dataclass, field

SUCCESS_STATUSES = ('ok', 'changed', 'rescued')
FAIL_STATUSES = ('failed', 'fatal', 'unreachable')

MARKER = 'PROFILE_COMMAND'
_TASK_KEYS = ('time', 'playbook', 'task_name', 'task_action', 'category', 'data')


@dataclass
class CommandSection:
    """One command's slice of a node log."""
    name: str
    running: str
    tasks: list[tuple[str, bool]] = field(default_factory=list)
    raw: list[str] = field(default_factory=list)


def split_task_line(line: str) -> dict:
    parts = [p.strip() for p in line.split(' - ')]
    return dict(zip(_TASK_KEYS, parts))


def parse_log(text: str) -> list[CommandSection]:
    """Split a log into command sections with task outcomes."""
    sections: list[CommandSection] = []
    current = None
    for line in text.splitlines():
        if line.startswith(MARKER):
            header = line[len(MARKER):].strip()
            name, _, running = header.partition(':')
            current = CommandSection(name=name.strip(), running=running.strip())
            sections.append(current)
            continue
        if current is None:
            current = CommandSection(name='', running='')
            sections.append(current)
        current.raw.append(line)
        if not line.strip():
            continue
        parts = split_task_line(line)
        category = (parts.get('category') or '').lower()
        if category in SUCCESS_STATUSES:
            current.tasks.append((parts['task_name'], True))
        elif category in FAIL_STATUSES:
            current.tasks.append((parts['task_name'], False))
    return sections


def render(sections: list[CommandSection], status: str, raw: bool = False) -> str:
    """Human-readable summary of a node's log."""
    blocks = []
    for section in sections:
        if raw:
            progress = '\n'.join(section.raw)
        else:
            progress = '\n'.join(
                f"   {'✅' if ok else '❌'} {task}" for task, ok in section.tasks
            )
        blocks.append(
            f"Command:\n    {section.name}\n\n"
            f"Running:\n    {section.running}\n\n"
            f"Progress:\n{progress}\n\n"
            f"Status:\n    {status.upper()}\n"
        )
    return '\n'.join(blocks)
