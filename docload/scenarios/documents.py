"""The document lifecycle workflow run by every VU.

One iteration: a patient creates a document, lists their documents and
reads the new one back; staff then review it and link it to a medical
record unique to the iteration. ``documentId`` flows from the create
response into steps 3 to 5.
"""

from __future__ import annotations

from docload.core.workflow import Check, Extraction, WorkflowStep, status_is

HOSPITAL_ID = "hospital-1"

PATIENT_HEADERS = {
    "Content-Type": "application/json",
    "X-Role": "PATIENT",
    "X-Patient-Id": "{patientId}",
}

STAFF_HEADERS = {
    "Content-Type": "application/json",
    "X-Role": "STAFF",
    "X-Hospital-Id": HOSPITAL_ID,
}


def build_document_workflow() -> list[WorkflowStep]:
    return [
        WorkflowStep(
            name="POST /documents",
            method="POST",
            path="/documents",
            headers=PATIENT_HEADERS,
            body={
                "hospitalId": HOSPITAL_ID,
                "title": "Blood Test Results",
                "category": "LAB_RESULTS",
                "notes": "Routine checkup",
            },
            extract=(Extraction(field="documentId", key="documentId"),),
            checks=(Check("create: status 201", status_is(201)),),
        ),
        WorkflowStep(
            name="GET /patients/:id/documents",
            method="GET",
            path="/patients/{patientId}/documents",
            headers=PATIENT_HEADERS,
            checks=(Check("list: status 200", status_is(200)),),
        ),
        WorkflowStep(
            name="GET /documents/:id",
            method="GET",
            path="/documents/{documentId}",
            headers=PATIENT_HEADERS,
            checks=(Check("get: status 200", status_is(200)),),
        ),
        WorkflowStep(
            name="PATCH /documents/:id/review",
            method="PATCH",
            path="/documents/{documentId}/review",
            headers=STAFF_HEADERS,
            body={"status": "APPROVED", "reviewNote": "Looks good"},
            checks=(Check("review: status 200", status_is(200)),),
        ),
        WorkflowStep(
            name="POST /documents/:id/links/.../medical-records/:id",
            method="POST",
            path="/documents/{documentId}/links/medical-records/record-{uniqueSuffix}",
            headers=STAFF_HEADERS,
            checks=(Check("link: status 200", status_is(200)),),
        ),
    ]
