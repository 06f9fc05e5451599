#!/usr/bin/env python3
"""
Document Workflow Circuit — demo seed.

Creates an "Invoice approval" circuit:

    Draft ──▶ Review ──(group "Finance", All)──▶ Approved ──▶ Archived
                 │
                 └──▶ Draft               (rework)

plus three registered approvers and one document (id 1001) assigned at Draft.

Usage:
    python scripts/seed_demo_circuit.py
    python scripts/seed_demo_circuit.py --document-id 2001
"""

import argparse
import sys

sys.path.insert(0, ".")

from docflow import create_app
from docflow.services import approver_directory, circuit_service, step_authoring, workflow_service


def seed(document_id: int) -> None:
    approvers = [
        approver_directory.register_approver(user_id, username=name)
        for user_id, name in ((501, "a.yilmaz"), (502, "m.kaya"), (503, "s.demir"))
    ]
    finance = approver_directory.create_approval_group({
        "name": "Finance",
        "rule_type": "All",
        "member_ids": [a["id"] for a in approvers[:2]],
    })

    circuit = circuit_service.create_circuit({
        "title": "Invoice approval",
        "document_type": "invoice",
        "allow_backtrack": True,
    })
    cid = circuit["id"]
    draft = circuit_service.add_status(cid, {"title": "Draft", "is_initial": True})
    review = circuit_service.add_status(cid, {"title": "Review"})
    approved = circuit_service.add_status(cid, {"title": "Approved"})
    archived = circuit_service.add_status(cid, {"title": "Archived", "is_final": True})

    for data in (
        {"current_status_id": draft["id"], "next_status_id": review["id"],
         "title": "Submit for review"},
        {"current_status_id": review["id"], "next_status_id": approved["id"],
         "title": "Finance approval", "requires_approval": True,
         "approval_group_id": finance["id"]},
        {"current_status_id": review["id"], "next_status_id": draft["id"],
         "title": "Send back for rework"},
        {"current_status_id": approved["id"], "next_status_id": archived["id"],
         "title": "Archive"},
    ):
        step, validation = step_authoring.commit_step(cid, data)
        if step is None:
            raise SystemExit(f"Step rejected: {validation.code.value} {validation.message}")
        print(f"  step {step['step_key']}: {step['current_status_title']} → {step['next_status_title']}")

    circuit_service.update_circuit(cid, {"is_active": True})
    workflow_service.assign_document(document_id, cid, actor="seed")
    print(f"Circuit {circuit['circuit_key']} active; document {document_id} at Draft")


def main():
    parser = argparse.ArgumentParser(description="Seed a demo workflow circuit")
    parser.add_argument("--document-id", type=int, default=1001)
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        seed(args.document_id)


if __name__ == "__main__":
    main()
