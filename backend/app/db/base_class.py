from sqlalchemy.orm import as_declarative, declared_attr


@as_declarative()
class Base:
    """Declarative base for companies, employees, roles and audit logs."""
    __name__: str
    __tablename__: str

    # Models set __tablename__ explicitly; this is the fallback
    @declared_attr  # type: ignore[misc]
    def __tablename__(cls) -> str:
        return cls.__name__.lower()
