from medcheck.models.user import User
from medcheck.models.patient import Patient
from medcheck.models.drug_interaction import DrugInteraction

__all__ = ["User", "Patient", "DrugInteraction"]
