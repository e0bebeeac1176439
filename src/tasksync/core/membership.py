"""Authorization decisions over projects and tasks.

Every check is a pure function of the user, the project and (where
relevant) the task. Missing inputs deny; nothing here raises. Callers turn
a False into ForbiddenError.

Policy:
- Viewing a project, its tasks and its chat: admin, creator or member.
- Editing a task: admin or the task's assignee.
- Creating or deleting a task: admin only.
- Editing or deleting a project: admin or its creator.
"""

from tasksync.models import Project, Role, Task, User


def _is_admin(user: User | None) -> bool:
    return user is not None and user.role == Role.ADMIN


def can_view(user: User | None, project: Project | None) -> bool:
    """Whether the user may observe the project's tasks and chat."""
    if user is None or project is None:
        return False
    return _is_admin(user) or user.id == project.created_by or project.has_member(user.id)


def can_view_task(user: User | None, task: Task | None, project: Project | None) -> bool:
    """Whether the user may read a task. Every viewer of the project sees all its tasks."""
    if task is None or project is None or task.project_id != project.id:
        return False
    return can_view(user, project)


def can_mutate_task(user: User | None, task: Task | None, project: Project | None) -> bool:
    """Whether the user may patch a task."""
    if user is None or task is None or project is None or task.project_id != project.id:
        return False
    return _is_admin(user) or (task.assignee is not None and task.assignee == user.id)


def can_create_task(user: User | None, project: Project | None) -> bool:
    """Whether the user may add a task to the project."""
    return project is not None and _is_admin(user)


def can_delete_task(user: User | None, task: Task | None, project: Project | None) -> bool:
    """Whether the user may remove a task."""
    if task is None or project is None or task.project_id != project.id:
        return False
    return _is_admin(user)


def can_manage_project(user: User | None, project: Project | None) -> bool:
    """Whether the user may edit or delete the project itself."""
    if user is None or project is None:
        return False
    return _is_admin(user) or user.id == project.created_by
