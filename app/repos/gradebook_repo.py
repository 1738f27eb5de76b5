from __future__ import annotations

from typing import Protocol

from app.models.gradebook import CategoryConfig, GradeItem, StudentRef

Configs = tuple[CategoryConfig, ...]


class GradebookRepo(Protocol):
    def get_configs(self, course_id: str) -> Configs: ...
    def set_configs(self, course_id: str, configs: Configs) -> None: ...
    def enroll(self, course_id: str, student: StudentRef) -> None: ...
    def roster(self, course_id: str) -> list[StudentRef]: ...
    def is_enrolled(self, course_id: str, student_id: str) -> bool: ...
    def add_item(self, course_id: str, item: GradeItem) -> None: ...
    def get_item(self, course_id: str, item_id: str) -> GradeItem | None: ...
    def upsert_item(self, course_id: str, item: GradeItem) -> None: ...
    def delete_item(self, course_id: str, item_id: str) -> bool: ...
    def items_for_course(self, course_id: str) -> list[GradeItem]: ...
    def items_for_student(self, course_id: str, student_id: str) -> list[GradeItem]: ...


class InMemoryGradebookRepo:
    def __init__(self) -> None:
        self._configs: dict[str, tuple[CategoryConfig, ...]] = {}
        self._rosters: dict[str, dict[str, StudentRef]] = {}
        self._items: dict[str, list[GradeItem]] = {}

    def get_configs(self, course_id: str) -> tuple[CategoryConfig, ...]:
        return self._configs.get(course_id, ())

    def set_configs(self, course_id: str, configs: tuple[CategoryConfig, ...]) -> None:
        self._configs[course_id] = tuple(configs)

    def enroll(self, course_id: str, student: StudentRef) -> None:
        # Re-enrolling refreshes the display name.
        self._rosters.setdefault(course_id, {})[student.student_id] = student

    def roster(self, course_id: str) -> list[StudentRef]:
        return list(self._rosters.get(course_id, {}).values())

    def is_enrolled(self, course_id: str, student_id: str) -> bool:
        return student_id in self._rosters.get(course_id, {})

    def add_item(self, course_id: str, item: GradeItem) -> None:
        self._items.setdefault(course_id, []).append(item)

    def get_item(self, course_id: str, item_id: str) -> GradeItem | None:
        for item in self._items.get(course_id, ()):
            if item.id == item_id:
                return item
        return None

    def upsert_item(self, course_id: str, item: GradeItem) -> None:
        items = self._items.setdefault(course_id, [])
        for idx, existing in enumerate(items):
            if existing.id == item.id:
                items[idx] = item
                return
        items.append(item)

    def delete_item(self, course_id: str, item_id: str) -> bool:
        items = self._items.get(course_id, [])
        for idx, existing in enumerate(items):
            if existing.id == item_id:
                del items[idx]
                return True
        return False

    def items_for_course(self, course_id: str) -> list[GradeItem]:
        return list(self._items.get(course_id, ()))

    def items_for_student(self, course_id: str, student_id: str) -> list[GradeItem]:
        return [i for i in self._items.get(course_id, ()) if i.student_id == student_id]

    def clear(self) -> None:
        self._configs.clear()
        self._rosters.clear()
        self._items.clear()
