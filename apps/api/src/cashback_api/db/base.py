from sqlalchemy.orm import DeclarativeBase, declared_attr


def enum_values(enum_cls) -> list[str]:
    """Persist enum values (not member names) so server defaults and migrations agree."""

    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models with automatic table naming."""

    @declared_attr.directive
    def __tablename__(cls) -> str:  # noqa: N805
        return cls.__name__.lower()


# Import models to ensure metadata registration for Alembic and create_all
try:  # pragma: no cover - import side effects only
    import cashback_api.models  # noqa: F401,WPS433
except ImportError:  # pragma: no cover - partial imports during migrations
    pass
