from sqlalchemy import create_engine, inspect, text

from clinic_scheduler import database


def test_ensure_scheduling_schema_upgrades_legacy_tables(tmp_path, monkeypatch) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'legacy.db'}")
    with engine.begin() as connection:
        connection.execute(text('CREATE TABLE users (id INTEGER PRIMARY KEY, email VARCHAR, role VARCHAR)'))
        connection.execute(text(
            'CREATE TABLE appointments (id INTEGER PRIMARY KEY, patient_id INTEGER, provider_id INTEGER, '
            'appointment_datetime TIMESTAMP, status VARCHAR)'
        ))
    monkeypatch.setattr(database, '_scheduling_schema_checked', False)

    database.ensure_scheduling_schema(bind=engine)

    inspector = inspect(engine)
    user_columns = {column['name'] for column in inspector.get_columns('users')}
    assert {'slot_duration_minutes', 'specialization', 'location'} <= user_columns
    assert 'created_at' in {column['name'] for column in inspector.get_columns('appointments')}
    assert 'uq_appointments_active_slot' in {index['name'] for index in inspector.get_indexes('appointments')}
    engine.dispose()


def test_ensure_scheduling_schema_runs_once(tmp_path, monkeypatch) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    monkeypatch.setattr(database, '_scheduling_schema_checked', False)

    database.ensure_scheduling_schema(bind=engine)
    assert database._scheduling_schema_checked is True

    engine.dispose()
    database.ensure_scheduling_schema(bind=None)
