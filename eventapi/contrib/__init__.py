"""eventapi contrib — record lifecycle notifications.

Persistence layers call into ``RecordMediator`` after a record is
committed; the mediator turns the change into a ``model.*`` event name
and payload and hands both to a notifier.
"""
