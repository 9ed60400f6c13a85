from django.core.management.base import BaseCommand, CommandError

from editions.application.use_cases import reconcile, reconcile_all
from editions.domain.exceptions import InvariantViolationError, StoreUnavailableError


class Command(BaseCommand):
    help = "Renumber active editions 1..N for the given products (or all of them)."

    def add_arguments(self, parser):
        parser.add_argument("product_ids", nargs="*", help="Product ids to reconcile.")
        parser.add_argument(
            "--all",
            action="store_true",
            dest="all_products",
            help="Reconcile every product that has allocation records.",
        )

    def handle(self, *args, **options):
        product_ids = options["product_ids"]
        if not product_ids and not options["all_products"]:
            raise CommandError("Give one or more product ids, or --all.")

        try:
            if options["all_products"]:
                results = reconcile_all()
            else:
                results = {product_id: reconcile(product_id) for product_id in product_ids}
        except (StoreUnavailableError, InvariantViolationError) as exc:
            raise CommandError(str(exc)) from exc

        for product_id, assignments in results.items():
            self.stdout.write(
                f"{product_id}: {len(assignments)} active edition(s) numbered 1..{len(assignments)}"
            )
        self.stdout.write(self.style.SUCCESS(f"Reconciled {len(results)} product(s)."))
