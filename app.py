from hopeai import database
from hopeai.config import SEED_DEMO_DATA
from hopeai.flows import ClinicalReasoningFlow
from hopeai.streaming import ResponseStreamManager
from hopeai.utils import format_references


def choose_patient():
    """
    Ask which patient the session is about.

    Returns:
        The chosen patient record, or None to exit
    """
    patients = database.list_patients()
    if not patients:
        print("No patients found. Add one through the web API first.")
        return None

    print("\nAvailable patients:")
    for patient in patients:
        print(f"  {patient['id']}: {patient['name']} ({patient['status']})")

    while True:
        patient_id = input("\nPatient id (exit with 'e'): ").strip()
        if patient_id.lower() == "e":
            return None
        patient = database.get_patient(patient_id)
        if patient is not None:
            return patient
        print(f"Patient {patient_id} not found.")


def query_procedure(patient):
    """
    Answer questions about one patient, streaming the pipeline output.

    Args:
        patient: The patient record the questions are about
    """
    print(f"\nHi, I am your clinical assistant. Ask me anything about {patient['name']}.")
    stream_manager = ResponseStreamManager()
    stream_manager.on_progress(lambda event: print(f"\n[{event.progress}%] {event.message}"))
    stream_manager.on_chunk(lambda chunk: print(chunk, end="", flush=True))

    while True:
        question = input("\nQuestion (exit with 'e'): ").strip()
        if question.lower() == "e":
            print("Exiting query procedure....")
            break
        if not question:
            continue

        stream_manager.reset(keep_listeners=True)
        query = database.create_query(patient["id"], question, created_by="console")
        response = ClinicalReasoningFlow(
            patient["id"], question, stream_manager=stream_manager, exclude_query_id=query["id"]
        ).execute()
        database.update_query(
            query["id"],
            answer=response["mainAnswer"],
            response_json=response,
            confidence_score=response["confidenceScore"],
            references=response.get("references", []),
        )

        print(f"\n\nAnswer:\n{response['mainAnswer']}")
        print(f"\nClinical reasoning:\n{response['reasoning']}")
        print(f"\nConfidence: {round(response['confidenceScore'] * 100)}%\n")
        print(format_references(response.get("references", [])))


def main():
    database.init_db()
    if SEED_DEMO_DATA:
        database.seed_demo()
    patient = choose_patient()
    if patient is not None:
        query_procedure(patient)


if __name__ == "__main__":
    main()
