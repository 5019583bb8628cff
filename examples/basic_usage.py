"""
sqlwire - Basic Usage Example

This example demonstrates the core features of sqlwire:
- Building a database from options and a connection factory
- Opening sessions
- Executing statements
- Using transactions
- Reading several result sets with a grid reader
- Typed result materialization

Run with: python3 examples/basic_usage.py
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import create_engine

from sqlwire import (
    CardinalityError,
    Database,
    DatabaseOptions,
    SqlWireError,
)


@dataclass
class Person:
    """Person row for typed materialization"""
    name: str
    age: int


PEOPLE = [
    {"name": "Alice", "age": 30},
    {"name": "Bob", "age": 25},
    {"name": "Charlie", "age": 35},
    {"name": "David", "age": 28},
]


def main() -> int:
    """Run the basic usage example"""
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    print("=== sqlwire Basic Usage Example ===\n")

    # Use temporary directory for demo
    db_dir = tempfile.mkdtemp(prefix="sqlwire_example_")
    engine = create_engine(f"sqlite:///{Path(db_dir) / 'example.db'}")

    try:
        # 1. Build the database
        print("1. Building database...")
        database = Database(DatabaseOptions(), lambda: engine)
        print(f"   Database ready at {db_dir}\n")

        with database.session() as session:
            # 2. Create the schema
            print("2. Creating schema...")
            session.execute(
                "create table person (id integer primary key, name text, age integer)"
            )
            print("   Table created\n")

            # 3. Insert data using a transaction
            print("3. Inserting data with transaction...")
            with session.transaction() as tx:
                session.execute(
                    "insert into person (name, age) values (:name, :age)", PEOPLE
                )
                tx.commit()
            print(f"   Inserted {len(PEOPLE)} persons\n")

            # 4. Typed queries
            print("4. Querying into a dataclass...")
            people = session.query(
                "select name, age from person where age > :age order by age desc",
                {"age": 26},
                as_type=Person,
            )
            for person in people:
                print(f"   - {person}")
            print()

            # 5. Grid reader
            print("5. Reading two result sets...")
            with session.execute_grid_reader([
                "select name from person order by name",
                "select count(*) from person",
            ]) as grid:
                names = grid.read(str)
                total = grid.read_single(int)
            print(f"   {total} persons: {', '.join(names)}\n")

            # 6. Undecided transaction rolls back
            print("6. Demonstrating implicit rollback...")
            with session.transaction():
                session.execute(
                    "insert into person (name, age) values (:name, :age)",
                    {"name": "George", "age": 50},
                )
            count = session.execute_scalar("select count(*) from person", as_type=int)
            print(f"   Person count after rollback: {count}\n")

            # 7. Cardinality checks
            print("7. Single-row reads...")
            try:
                session.query_single("select name from person")
            except CardinalityError as e:
                print(f"   {e}\n")

        print("=== Example completed successfully ===")
        return 0

    except SqlWireError as e:
        print(f"\n[ERROR] sqlwire Error: {e}")
        return 1

    finally:
        engine.dispose()
        shutil.rmtree(db_dir, ignore_errors=True)


if __name__ == "__main__":
    exit(main())
