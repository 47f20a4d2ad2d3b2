# scripts/inspect_db.py  (run from the project root: python -m scripts.inspect_db)

from core.config import load_settings
from core.database import create_db_engine, init_db, make_session_factory
from services.document_store import PATIENTS, RECORDS, SqlDocumentStore


def main():
    settings = load_settings()
    print("DB:", settings.database_url)
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    store = SqlDocumentStore(make_session_factory(engine))

    patients = store.list_documents(PATIENTS)
    records = store.list_documents(RECORDS)
    print("patients:", len(patients), "records:", len(records))

    # ids only; names and contact details stay out of terminal scrollback
    linked = {rid for p in patients for rid in p.get("recordsid") or []}
    for r in records[-10:]:
        print(r["$id"], r.get("recorddate"), r.get("patientsid"), "linked" if r["$id"] in linked else "UNLINKED")


if __name__ == "__main__":
    main()
