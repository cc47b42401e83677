"""Cluster type discovery and persisted answers.

A cluster type is a directory under one of the configured type paths:

    <type dir>/
        metadata.yaml       id, name, description, questions
        state.yaml          {prepared: true} once prepare.sh has succeeded
        prepare.sh          one-time preparation script
        identities/*.yaml   identities available to nodes of this type
        run_env/            working directory for prepare.sh

Type ids must be unique across all type paths.
"""

import logging
import re
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from config import ProfileConfig, read_yaml, write_yaml
from errors import DuplicateDefinitionError, PreconditionError
from nodes.models import Identity

logger = logging.getLogger(__name__)

QUESTION_TYPES = ('free-text', 'boolean', 'password', 'conditional')


@dataclass
class Validation:
    """Answer validation rules."""
    required: bool = False
    format: Optional[str] = None
    message: Optional[str] = None

    def matches(self, value: Any) -> bool:
        """True when there is no format rule or the value satisfies it."""
        if not self.format:
            return True
        if value is None:
            return False
        return re.search(self.format, str(value)) is not None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'Validation':
        data = data or {}
        return cls(
            required=bool(data.get('required', False)),
            format=data.get('format'),
            message=data.get('message'),
        )


@dataclass
class Question:
    """A node in a cluster type's question tree.

    Attributes:
        id: Key into the answers mapping
        text: Prompt shown to the user
        type: free-text, boolean, password or conditional
        env: Environment variable the answer is exported as
        validation: Required flag and format rule
        default: Static fallback value
        default_smart: Probe command whose output becomes the default
        on: Parent answer that makes this question visible
        children: Sub-questions, visible when their trigger matches this answer
    """
    id: str
    text: str
    type: str = 'free-text'
    env: str = ''
    validation: Validation = field(default_factory=Validation)
    default: Any = None
    default_smart: Optional[str] = None
    on: Any = None
    children: list['Question'] = field(default_factory=list)

    def __post_init__(self):
        if not self.env:
            self.env = self.id
        if self.type not in QUESTION_TYPES:
            raise ValueError(f"Unknown question type '{self.type}' for question '{self.id}'")

    @property
    def masked(self) -> bool:
        return self.type == 'password' or self.id == 'default_password'

    def walk(self):
        """Yield this question and all descendants in pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()

    @classmethod
    def from_dict(cls, data: dict) -> 'Question':
        # YAML 1.1 loads a bare `on:` key as boolean True
        trigger = data.get('where', data.get('on', data.get(True)))
        return cls(
            id=data['id'],
            text=data.get('text', data['id']),
            type=data.get('type', 'free-text'),
            env=data.get('env', ''),
            validation=Validation.from_dict(data.get('validation')),
            default=data.get('default'),
            default_smart=data.get('default_smart'),
            on=trigger,
            children=[cls.from_dict(q) for q in data.get('questions') or []],
        )


def walk_questions(questions: list[Question]):
    """Yield every question of a tree in pre-order."""
    for question in questions:
        yield from question.walk()


class ClusterType:
    """A deployment profile with its question tree and saved answers."""

    def __init__(
        self,
        id: str,
        name: str,
        base_path: Path,
        config: ProfileConfig,
        description: str = '',
        questions: Optional[list[Question]] = None,
        prepared: bool = False,
    ):
        self.id = id
        self.name = name
        self.description = description
        self.base_path = Path(base_path)
        self.config = config
        self.questions = questions or []
        self._prepared = prepared
        self._answers: Optional[dict] = None

    def __repr__(self) -> str:
        return f"ClusterType({self.id!r}, name={self.name!r})"

    @classmethod
    def load(cls, type_dir: Path, config: ProfileConfig) -> 'ClusterType':
        metadata = read_yaml(type_dir / 'metadata.yaml')
        state = read_yaml(type_dir / 'state.yaml')
        return cls(
            id=str(metadata['id']),
            name=metadata.get('name', metadata['id']),
            description=metadata.get('description', ''),
            questions=[Question.from_dict(q) for q in metadata.get('questions') or []],
            prepared=bool(state.get('prepared', False)),
            base_path=type_dir,
            config=config,
        )

    # Answers

    @property
    def answers_file(self) -> Path:
        return self.config.answers_dir / f'{self.id}.yaml'

    @property
    def answers(self) -> dict:
        if self._answers is None:
            self._answers = read_yaml(self.answers_file)
        return self._answers

    def fetch_answer(self, question_id: str) -> Any:
        return self.answers.get(question_id)

    def save_answers(self, answers: dict) -> None:
        """Merge answers into the saved set."""
        merged = {**self.answers, **answers}
        write_yaml(self.answers_file, merged)
        self._answers = merged
        logger.info(f"Saved {len(answers)} answers for cluster type '{self.id}'")

    @property
    def configured(self) -> bool:
        return all(self.fetch_answer(q.id) is not None for q in self.questions)

    # Identities

    def identities(self) -> list[Identity]:
        identity_dir = self.base_path / 'identities'
        if not identity_dir.is_dir():
            return []
        return sorted(
            (Identity.load(p) for p in identity_dir.glob('*.yaml') if p.is_file()),
            key=lambda i: i.name,
        )

    def find_identity(self, name: Optional[str]) -> Optional[Identity]:
        for identity in self.identities():
            if identity.name == name:
                return identity
        return None

    # Preparation

    @property
    def prepared(self) -> bool:
        return self._prepared

    @property
    def prepare_command(self) -> Path:
        return self.base_path / 'prepare.sh'

    @property
    def run_env(self) -> Path:
        path = self.base_path / 'run_env'
        path.mkdir(parents=True, exist_ok=True)
        return path

    def verify(self) -> None:
        """Record that preparation succeeded."""
        write_yaml(self.base_path / 'state.yaml', {'prepared': True})
        self._prepared = True

    def prepare(self) -> int:
        """Run prepare.sh in run_env, logging output; mark prepared on success.

        Returns:
            Exit code of the preparation script
        """
        if not self.prepare_command.is_file():
            raise PreconditionError(f"No script found for preparing the {self.name} cluster type")

        self.config.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.config.log_dir / f'{self.id}-{int(time.time())}.log'
        logger.info(f"Preparing cluster type '{self.id}' (log: {log_path})")

        with open(log_path, 'a', encoding='utf-8') as log:
            try:
                result = subprocess.run(
                    [str(self.prepare_command)],
                    cwd=self.run_env,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    check=False,
                )
                rc = result.returncode
            except OSError as e:
                log.write(f"{e}\n")
                rc = 127

        if rc == 0:
            self.verify()
        else:
            logger.error(f"Preparation of '{self.id}' failed with exit status {rc}")
        return rc


class TypeRegistry:
    """Cluster types discovered across the configured type paths.

    Discovery runs once per registry and fails hard on duplicate ids.
    """

    def __init__(self, config: ProfileConfig):
        self.config = config
        self._types: Optional[list[ClusterType]] = None

    def all(self) -> list[ClusterType]:
        if self._types is None:
            self._types = self._discover()
        return self._types

    def _discover(self) -> list[ClusterType]:
        found: list[ClusterType] = []
        for type_path in self.config.type_paths:
            if not type_path.is_dir():
                logger.debug(f"Type path {type_path} does not exist")
                continue
            for type_dir in sorted(p for p in type_path.iterdir() if p.is_dir()):
                if not (type_dir / 'metadata.yaml').is_file():
                    continue
                found.append(ClusterType.load(type_dir, self.config))

        seen: dict[str, int] = {}
        for cluster_type in found:
            seen[cluster_type.id] = seen.get(cluster_type.id, 0) + 1
        duplicates = [type_id for type_id, count in seen.items() if count > 1]
        if duplicates:
            raise DuplicateDefinitionError(duplicates)

        return sorted(found, key=lambda t: t.name)

    def __getitem__(self, name: str) -> Optional[ClusterType]:
        for cluster_type in self.all():
            if name in (cluster_type.id, cluster_type.name):
                return cluster_type
        return None

    def find(self, *names: Optional[str]) -> Optional[ClusterType]:
        """Return the type matching the first non-empty name."""
        for name in names:
            if name:
                return self[name]
        return None

    def selected(self) -> Optional[ClusterType]:
        return self.find(self.config.cluster_type)
