from widgetgate import models  # noqa: F401
from widgetgate.db.base import Base


def test_all_tables_registered():
    assert {"contractors", "subscriptions", "widget_keys", "widget_usage_logs", "leads"} <= set(Base.metadata.tables)


def test_widget_key_string_is_unique():
    column = Base.metadata.tables["widget_keys"].c.widget_key
    assert column.unique is True
    assert column.nullable is False


def test_usage_log_key_reference_is_nullable():
    table = Base.metadata.tables["widget_usage_logs"]
    assert table.c.widget_key_id.nullable is True
    assert table.c.validation_result.nullable is False
    assert any(ix.name == "idx_widget_usage_logs_key_created" for ix in table.indexes)
