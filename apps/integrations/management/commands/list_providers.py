"""
Management command to list registered provider adapters and tenant integrations.

Usage:
    python manage.py list_providers
    python manage.py list_providers --kind notification
    python manage.py list_providers --tenant acme-ios
"""

from django.core.management.base import BaseCommand, CommandError

from apps.integrations.base import CONTRACTS
from apps.integrations.models import IntegrationKind, TenantIntegration
from apps.integrations.registry import list_providers


class Command(BaseCommand):
    help = "List registered provider adapters and the integrations configured per tenant"

    def add_arguments(self, parser):
        parser.add_argument(
            "--kind",
            type=str,
            help=f"Only show one integration kind ({', '.join(IntegrationKind.values)})",
        )
        parser.add_argument(
            "--tenant",
            type=str,
            help="Show the active integrations of a tenant",
        )

    def handle(self, *args, **options):
        kind = options.get("kind")
        if kind and kind not in IntegrationKind.values:
            raise CommandError(f"Unknown kind: {kind}. Expected one of {IntegrationKind.values}")

        self.stdout.write(self.style.SUCCESS("Registered Provider Adapters"))
        self.stdout.write("-" * 60)
        registered = list_providers(kind)
        for k in [kind] if kind else IntegrationKind.values:
            contract = CONTRACTS.get(k)
            self.stdout.write(f"\n{self.style.WARNING(k)}")
            if contract is not None:
                self.stdout.write(f"  Contract: {contract.__name__}")
            providers = registered.get(k, [])
            if providers:
                for name in providers:
                    self.stdout.write(f"    - {name}")
            else:
                self.stdout.write("    (none registered)")

        tenant = options.get("tenant")
        if tenant:
            self.stdout.write("\n" + "-" * 60)
            self.stdout.write(self.style.SUCCESS(f"Active integrations for {tenant}"))
            rows = TenantIntegration.objects.filter(tenant_id=tenant, is_active=True)
            if kind:
                rows = rows.filter(kind=kind)
            if not rows.exists():
                self.stdout.write("  (none)")
            for row in rows.order_by("kind"):
                self.stdout.write(f"  {row.kind}: {row.provider} ({row.name or 'unnamed'})")
