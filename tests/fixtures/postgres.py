import logging

import pytest
from polydb.adapters import SQLAlchemyAdapter
from polydb.options import ConnectionConfig, EngineType
from testcontainers.postgres import PostgresContainer

logger = logging.getLogger(__name__)

PG_USERNAME = 'postgres'
PG_PASSWORD = 'postgres'
PG_DATABASE = 'test_db'


@pytest.fixture(scope='session')
def psql_docker(request):
    """Session-scoped PostgreSQL container using testcontainers.

    Testcontainers automatically:
    - Assigns a random available port
    - Waits for the database to be ready
    - Handles cleanup when the session ends

    Tests using it are skipped when Docker is not available.
    """
    container = PostgresContainer(
        image='postgres:16',
        username=PG_USERNAME,
        password=PG_PASSWORD,
        dbname=PG_DATABASE,
    )

    try:
        container.start()
    except Exception as e:
        logger.warning(f'Cannot start postgres container: {e}')
        pytest.skip(f'Docker is not available: {e}')

    logger.info(
        f'PostgreSQL container started at '
        f'{container.get_container_host_ip()}:{container.get_exposed_port(5432)}'
    )

    def finalizer():
        try:
            container.stop()
            logger.info('PostgreSQL container stopped')
        except Exception as e:
            logger.warning(f'Error stopping container: {e}')

    request.addfinalizer(finalizer)
    return container


@pytest.fixture
def postgres_config(psql_docker):
    return ConnectionConfig(
        id='pg-docker',
        name='Docker PostgreSQL',
        engine_type=EngineType.RELATIONAL,
        drivername='postgresql',
        host=psql_docker.get_container_host_ip(),
        port=int(psql_docker.get_exposed_port(5432)),
        database=PG_DATABASE,
        username=PG_USERNAME,
        password=PG_PASSWORD,
    )


@pytest.fixture
async def pg_adapter(postgres_config, settings):
    """Connected adapter with a freshly staged test_table"""
    adapter = SQLAlchemyAdapter(postgres_config, settings)
    await adapter.connect()

    await adapter.execute_query('DROP TABLE IF EXISTS test_table')
    await adapter.execute_query("""
    CREATE TABLE test_table (
        id SERIAL PRIMARY KEY,
        name VARCHAR(50) NOT NULL UNIQUE,
        value INTEGER NOT NULL
    )
    """)
    await adapter.execute_query(
        "INSERT INTO test_table (name, value) VALUES ('Alice', 10), ('Bob', 20), ('Charlie', 30)")

    yield adapter
    await adapter.disconnect()
