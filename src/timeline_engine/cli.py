from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from .config import VALID_LOG_LEVELS, get_log_level, load_engine_config
from .errors import TimelineEngineError
from .logging_utils import configure_logging
from .task_engine import TaskEngine


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _engine(args: argparse.Namespace) -> TaskEngine:
    return TaskEngine.for_project_dir(_resolve_project_dir(args.project_dir))


def _emit(payload: Any) -> int:
    sys.stdout.write(json.dumps(payload, indent=2) + '\n')
    return 0


def _status_seed(args: argparse.Namespace) -> int:
    statuses = _engine(args).create_project_statuses(args.project_id)
    return _emit({'statuses': [s.to_dict() for s in statuses]})


def _task_create(args: argparse.Namespace) -> int:
    task = _engine(args).create_task(
        args.project_id,
        args.title,
        status_id=args.status_id,
        start_date=args.start,
        due_date=args.due,
        estimated_hours=args.hours,
        is_milestone=args.milestone,
        parent_task_id=args.parent,
        assignee_id=args.assignee,
    )
    return _emit({'task': task.to_dict()})


def _task_list(args: argparse.Namespace) -> int:
    tasks = _engine(args).list_tasks(args.project_id)
    return _emit({'tasks': [t.to_dict() for t in tasks]})


def _task_delete(args: argparse.Namespace) -> int:
    removed = _engine(args).delete_task(args.task_id)
    return _emit({'deleted': args.task_id, 'removed_dependencies': [d.id for d in removed]})


def _task_progress(args: argparse.Namespace) -> int:
    return _emit({'task_id': args.task_id, 'progress_percentage': _engine(args).compute_progress(args.task_id)})


def _dependency_add(args: argparse.Namespace) -> int:
    dep = _engine(args).add_dependency(args.blocked_task_id, args.blocking_task_id)
    return _emit({'dependency': dep.to_dict()})


def _dependency_remove(args: argparse.Namespace) -> int:
    dep = _engine(args).remove_dependency(args.dependency_id)
    return _emit({'removed': dep.id})


def _dependency_downstream(args: argparse.Namespace) -> int:
    return _emit({'task_id': args.task_id, 'downstream': _engine(args).downstream(args.task_id)})


def _timeline_update(args: argparse.Namespace) -> int:
    update: dict[str, Any] = {'autoSchedule': args.auto_schedule}
    if args.clear_start:
        update['startDate'] = None
    elif args.start is not None:
        update['startDate'] = args.start
    if args.clear_end:
        update['endDate'] = None
    elif args.end is not None:
        update['endDate'] = args.end
    result = _engine(args).update_timeline(args.task_id, args.project_id, update)
    return _emit(result.to_dict())


def _timeline_show(args: argparse.Namespace) -> int:
    engine = _engine(args)
    return _emit({
        'tasks': engine.timeline(args.project_id),
        'execution_order': engine.execution_order(args.project_id),
        'resource_load': [load.to_dict() for load in engine.resource_load(args.project_id)],
    })


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Task dependency graph and timeline scheduling engine')
    parser.add_argument('--project-dir', default=None, help='Directory holding .timeline_engine/ (default: current working directory)')
    parser.add_argument('--log-level', default=None, type=str.upper, choices=sorted(VALID_LOG_LEVELS), help='Override the configured log level')
    subparsers = parser.add_subparsers(dest='command', required=True)

    status = subparsers.add_parser('status', help='Manage task statuses')
    status_sub = status.add_subparsers(dest='status_cmd', required=True)
    sseed = status_sub.add_parser('seed', help='Create the default statuses for a project')
    sseed.add_argument('project_id')
    sseed.set_defaults(func=_status_seed)

    task = subparsers.add_parser('task', help='Manage tasks')
    task_sub = task.add_subparsers(dest='task_cmd', required=True)
    tcreate = task_sub.add_parser('create', help='Create a task')
    tcreate.add_argument('project_id')
    tcreate.add_argument('title')
    tcreate.add_argument('--status-id', default=None)
    tcreate.add_argument('--start', default=None, help='Start date (YYYY-MM-DD)')
    tcreate.add_argument('--due', default=None, help='Due date (YYYY-MM-DD)')
    tcreate.add_argument('--hours', default=None, type=float, help='Estimated hours')
    tcreate.add_argument('--milestone', action='store_true')
    tcreate.add_argument('--parent', default=None, help='Parent task id')
    tcreate.add_argument('--assignee', default=None)
    tcreate.set_defaults(func=_task_create)
    tlist = task_sub.add_parser('list', help='List tasks of a project')
    tlist.add_argument('project_id')
    tlist.set_defaults(func=_task_list)
    tdelete = task_sub.add_parser('delete', help='Delete a task and its dependencies')
    tdelete.add_argument('task_id')
    tdelete.set_defaults(func=_task_delete)
    tprogress = task_sub.add_parser('progress', help='Show derived progress')
    tprogress.add_argument('task_id')
    tprogress.set_defaults(func=_task_progress)

    dep = subparsers.add_parser('dependency', help='Manage dependencies')
    dep_sub = dep.add_subparsers(dest='dependency_cmd', required=True)
    dadd = dep_sub.add_parser('add', help='Mark BLOCKED as blocked by BLOCKING')
    dadd.add_argument('blocked_task_id')
    dadd.add_argument('blocking_task_id')
    dadd.set_defaults(func=_dependency_add)
    dremove = dep_sub.add_parser('remove', help='Remove a dependency by id')
    dremove.add_argument('dependency_id')
    dremove.set_defaults(func=_dependency_remove)
    ddown = dep_sub.add_parser('downstream', help='List tasks transitively blocked by a task')
    ddown.add_argument('task_id')
    ddown.set_defaults(func=_dependency_downstream)

    timeline = subparsers.add_parser('timeline', help='Inspect or change the timeline')
    timeline_sub = timeline.add_subparsers(dest='timeline_cmd', required=True)
    tupdate = timeline_sub.add_parser('update', help="Change a task's dates")
    tupdate.add_argument('project_id')
    tupdate.add_argument('task_id')
    start_group = tupdate.add_mutually_exclusive_group()
    start_group.add_argument('--start', default=None, help='New start date (YYYY-MM-DD)')
    start_group.add_argument('--clear-start', action='store_true')
    end_group = tupdate.add_mutually_exclusive_group()
    end_group.add_argument('--end', default=None, help='New due date (YYYY-MM-DD)')
    end_group.add_argument('--clear-end', action='store_true')
    tupdate.add_argument('--auto-schedule', action='store_true', help='Shift downstream tasks by the same delta')
    tupdate.set_defaults(func=_timeline_update)
    tshow = timeline_sub.add_parser('show', help='Show the ordered timeline and resource load')
    tshow.add_argument('project_id')
    tshow.set_defaults(func=_timeline_show)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    level = args.log_level
    if level is None:
        config, _ = load_engine_config(_resolve_project_dir(args.project_dir))
        level = get_log_level(config)
    configure_logging(level)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except TimelineEngineError as exc:
        sys.stderr.write(json.dumps({'error': exc.to_dict()}) + '\n')
        return 1


def run() -> None:
    sys.exit(main())
