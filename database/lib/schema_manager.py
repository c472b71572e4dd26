"""Database schema management module.

Schema versions live in database/schema/vN.py, each exporting a `schema` dict
with a version number, table definitions and optional migration statements.
A fresh database gets the latest version created directly; an existing one is
brought forward by running each newer version's migrations in order.
"""
import importlib
import logging
from pathlib import Path
from typing import Dict, Any

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'


class SchemaManager:
    """Manages database schema versioning and migrations."""

    def __init__(self, pool, schema_dir: Path = SCHEMA_DIR) -> None:
        """Initialize schema manager.

        Args:
            pool: Database connection pool
            schema_dir: Directory containing schema version files
        """
        self.pool = pool
        self._schema_dir = Path(schema_dir)
        self.current_version = 0

    async def initialize(self) -> None:
        """Create the version table if needed and apply pending versions.

        Raises:
            DatabaseSchemaError: If no schema files are found or migration fails
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INT8 PRIMARY KEY,
                        applied_at TIMESTAMP NOT NULL DEFAULT now()
                    )
                ''')
                row = await conn.fetchrow(
                    'SELECT version FROM schema_version ORDER BY version DESC LIMIT 1'
                )
                self.current_version = row['version'] if row else 0

            schema_files = self.load_schema_files()
            if not schema_files:
                raise DatabaseSchemaError("No valid schema files found in schema directory")

            await self._apply_migrations(schema_files)

        except DatabaseSchemaError:
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}")

    def load_schema_files(self) -> Dict[int, Dict[str, Any]]:
        """Load all schema version files.

        Returns:
            Dict mapping version numbers to schema definitions, ascending

        Raises:
            DatabaseSchemaError: If a file's declared version does not match its name
        """
        schema_files = {}
        if not self._schema_dir.exists():
            return schema_files

        for file in self._schema_dir.glob('v*.py'):
            try:
                version = int(file.stem[1:])
            except ValueError:
                logger.warning(f"Invalid schema filename: {file}")
                continue

            module = importlib.import_module(f"database.schema.{file.stem}")
            schema = getattr(module, 'schema', None)
            if schema is None:
                raise DatabaseSchemaError(f"Schema file {file} missing 'schema' definition")
            if schema['version'] != version:
                raise DatabaseSchemaError(
                    f"Schema version mismatch in {file}: "
                    f"Expected v{version}, got v{schema['version']}"
                )
            schema_files[version] = schema

        return dict(sorted(schema_files.items()))

    async def _apply_migrations(self, schema_files: Dict[int, Dict[str, Any]]) -> None:
        latest_version = max(schema_files.keys())
        if self.current_version >= latest_version:
            logger.info("Schema is up to date")
            return

        logger.info(
            f"Updating schema from version {self.current_version} to {latest_version}"
        )

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if self.current_version == 0:
                    await self._create_fresh_schema(conn, schema_files[latest_version])
                    return

                for version in range(self.current_version + 1, latest_version + 1):
                    if version not in schema_files:
                        continue
                    for statement in schema_files[version].get('migrations', []):
                        await conn.execute(statement)
                    await conn.execute(
                        'INSERT INTO schema_version (version) VALUES ($1)', version
                    )
                    logger.info(f"Successfully migrated to version {version}")

    async def _create_fresh_schema(self, conn, schema: Dict[str, Any]) -> None:
        """Create every table of the latest schema, then constraints and indexes."""
        for table in schema.get('tables', []):
            await conn.execute(self.create_table_sql(table))
            logger.info(f"Created table {table['name']}")

        for table in schema.get('tables', []):
            for statement in self.constraint_sql(table):
                await conn.execute(statement)

        await conn.execute(
            'INSERT INTO schema_version (version) VALUES ($1)', schema['version']
        )
        logger.info(f"Successfully created fresh schema version {schema['version']}")

    @staticmethod
    def create_table_sql(table: Dict[str, Any]) -> str:
        """CREATE TABLE statement for a table definition, without foreign keys."""
        columns = []
        constraints = []

        for col in table['columns']:
            col_def = f"{col['name']} {col['type']}"
            if col.get('primary_key'):
                constraints.append(f"PRIMARY KEY ({col['name']})")
            elif col.get('unique'):
                constraints.append(f"UNIQUE ({col['name']})")
            if 'default' in col:
                col_def += f" DEFAULT {col['default']}"
            if col.get('nullable') is False:
                col_def += " NOT NULL"
            columns.append(col_def)

        if isinstance(table.get('primary_key'), list):
            constraints.append(f"PRIMARY KEY ({', '.join(table['primary_key'])})")

        table_def = ', '.join(columns + constraints)
        return f"CREATE TABLE IF NOT EXISTS {table['name']} ({table_def})"

    @staticmethod
    def constraint_sql(table: Dict[str, Any]) -> list:
        """Foreign key and index statements for a table definition."""
        statements = []
        for fk in table.get('foreign_keys', []):
            statements.append(
                f"ALTER TABLE {table['name']} "
                f"ADD CONSTRAINT fk_{table['name']}_{fk['columns'][0]} "
                f"FOREIGN KEY ({', '.join(fk['columns'])}) REFERENCES {fk['references']}"
            )
        for idx in table.get('indexes', []):
            unique = 'UNIQUE ' if idx.get('unique') else ''
            where = f" WHERE {idx['where']}" if 'where' in idx else ''
            statements.append(
                f"CREATE {unique}INDEX IF NOT EXISTS {idx['name']} "
                f"ON {table['name']} ({', '.join(idx['columns'])}){where}"
            )
        return statements
