"""persistence/ -- Auditable, soft-deletable persistence for TrainingCRM.

Layer rule: persistence/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/ or auth/. The current actor arrives through the
core.actor.ActorResolver contract handed to each UnitOfWork.
"""
