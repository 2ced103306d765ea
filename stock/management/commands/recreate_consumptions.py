"""
Replay sold line items through the consumption recorder.

Usage:
    python manage.py recreate_consumptions orders.json
    python manage.py recreate_consumptions orders.json --dry-run
    python manage.py recreate_consumptions orders.json --reverse-first

The file holds a list of orders:
    [{"order_id": "1001", "line_items": [
        {"product_id": 3, "quantity": 2, "order_item_id": "1001-1",
         "bundle_selection": {"selected_mandatory": {"milk": "oat"}}}
    ]}]

Line items already recorded are left alone, so the command can be rerun.
"""

import json

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from stock.services import ConsumptionService, NotFoundError, RecipeService, ServiceError


class Command(BaseCommand):
    help = 'Recreate inventory consumption rows for past orders'

    def add_arguments(self, parser):
        parser.add_argument('path', help='JSON file with orders and their line items')
        parser.add_argument('--dry-run', action='store_true', help='Resolve recipes without writing anything')
        parser.add_argument('--reverse-first', action='store_true',
                            help='Reverse existing rows of each line item before recording it again')

    def handle(self, *args, **options):
        try:
            with open(options['path'], encoding='utf-8') as f:
                orders = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CommandError(f"Cannot read {options['path']}: {e}")

        if not isinstance(orders, list):
            raise CommandError('Expected a JSON list of orders')

        recorded = failed = 0
        for order in orders:
            order_id = order.get('order_id')
            for line in order.get('line_items', []):
                label = f"{order_id}/{line.get('order_item_id')}"
                try:
                    if options['dry_run']:
                        resolved = RecipeService.resolve(
                            line['product_id'], line.get('quantity', 1), line.get('bundle_selection')
                        )
                        self.stdout.write(f'{label}: {len(resolved)} materials')
                        continue

                    # A failed re-record must leave the previously recorded rows in place
                    with transaction.atomic():
                        if options['reverse_first']:
                            try:
                                ConsumptionService.reverse_line_item(order_id, line.get('order_item_id'))
                            except NotFoundError:
                                # nothing recorded yet for this line item
                                pass

                        ConsumptionService.record_order(order_id, [line])
                    recorded += 1
                except (ServiceError, KeyError) as e:
                    failed += 1
                    message = e.message if isinstance(e, ServiceError) else f'missing {e}'
                    self.stdout.write(self.style.ERROR(f'{label}: {message}'))

        if options['dry_run']:
            self.stdout.write(self.style.SUCCESS('Dry run finished'))
            return

        self.stdout.write(self.style.SUCCESS(f'Recorded {recorded} line items, {failed} failed'))
