"""Named shell functions rendered into a runnable script.

A :class:`Task` becomes a shell function definition; :class:`ExecutableTasks`
bundles tasks, an :class:`Env` and an entrypoint (the lines that call the
tasks) into one script.

Example::

    tasks = Tasks().add(Task("greet", 'echo "hello $1"')).add(Task("main", "greet $NAME"))
    script = ExecutableTasks(tasks, Env({"NAME": "world"}), "main").into_script("sh")
    result = await script.run()     # stdout: "hello world\n"
"""

from __future__ import annotations

from dataclasses import dataclass

import jinja2

from pipexec._format import escape_quote, indent_n
from pipexec.env import Env
from pipexec.script import Script

_jinja = jinja2.Environment(autoescape=False, keep_trailing_newline=True)  # noqa: S701
_jinja.filters["indent_n"] = indent_n
_jinja.filters["escape_quote"] = escape_quote

_TASK_TEMPLATE = _jinja.from_string("{{ name }}() {\n{{ script | indent_n(2) }}\n}")

_SCRIPT_TEMPLATE = _jinja.from_string(
    '{% for key, value in env %}{{ key }}="{{ value | escape_quote }}"\n{% endfor %}'
    "{{ tasks }}\n"
    "{{ entrypoint }}\n"
)


@dataclass
class Task:
    """A named script function."""

    name: str
    script: str

    def __str__(self) -> str:
        return _TASK_TEMPLATE.render(name=self.name, script=self.script)


class Tasks(list[Task]):
    """Ordered task definitions; renders to their functions joined by newlines."""

    def add(self, task: Task) -> Tasks:
        self.append(task)
        return self

    def __str__(self) -> str:
        return "\n".join(str(t) for t in self)


class ExecutableTasks:
    def __init__(self, tasks: Tasks, env: Env, *entrypoint: str) -> None:
        self.tasks = tasks
        self.env = env
        self.entrypoint: list[str] = list(entrypoint)
        """Lines run after the definitions, usually task invocations."""

    def render(self, *, dry: bool = False) -> str:
        """Render the script source.

        A dry render also assigns every Env variable at the top, so the
        output runs on its own without the Env attached.
        """
        env = sorted(self.env.items()) if dry else []
        return _SCRIPT_TEMPLATE.render(env=env, tasks=str(self.tasks), entrypoint="\n".join(self.entrypoint))

    def __str__(self) -> str:
        return self.render(dry=True)

    def into_script(self, shell: str, *args: str) -> Script:
        """Build a :class:`Script` that shares this Env."""
        return Script(self.render(), shell, *args, env=self.env)
