from apps.core.exceptions import BranchNotFound
from apps.core.schools.models import School


def resolve_branch(branch_code):
    """Look up an active branch by its code; views pass the result explicitly to services."""
    normalized = (branch_code or '').strip()
    branch = School.objects.filter(code__iexact=normalized, is_active=True).first()
    if not branch:
        raise BranchNotFound(f"Branch '{branch_code}' does not exist.", identifier=branch_code)
    return branch
