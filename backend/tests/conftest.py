import os, sys, pytest
# Ensure backend directory is on path so 'salespro' and 'tests' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
import salespro
from salespro import create_app, get_db
from salespro.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import salespro.models.audit  # noqa: F401


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app()
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture(autouse=True)
def fresh_schema(app_instance):
    """Every test starts from empty tables."""
    yield
    salespro.SessionLocal.remove()
    engine = salespro.db_engine
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()
