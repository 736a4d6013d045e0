# demand_replenishment/main.py
import argparse
import asyncio
import json
import sys
from typing import Dict, List, Optional

from tabulate import tabulate

from demand_replenishment.bootstrap import Services, build_services
from demand_replenishment.config import Config
from demand_replenishment.exceptions import ReplenishmentError
from demand_replenishment.logging_setup import logger as log_manager


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _forecast_table(forecast: Dict) -> str:
    summary = forecast.get('summary') or {}
    recommendation = forecast.get('reorder_recommendation') or {}
    rows = [
        ['Forecast ID', forecast['id']],
        ['SKU', forecast['sku']],
        ['Horizon (days)', forecast['horizon_days']],
        ['Generated at', forecast['generated_at']],
        ['Model', forecast['model_version']],
        ['Cached', forecast.get('cached', '-')],
        ['Total predicted', summary.get('total_predicted')],
        ['Daily average', summary.get('daily_average')],
        ['Trend', summary.get('trend')],
        ['Seasonality', summary.get('seasonality_detected')],
        ['Risk level', summary.get('risk_level', '-')],
        ['Reorder', recommendation.get('should_reorder')],
        ['Suggested qty', recommendation.get('suggested_qty')]
    ]
    return tabulate(rows, tablefmt='simple')


def _po_table(pos: List[Dict]) -> str:
    rows = [
        [po['id'], po['po_number'], po['status'], po['supplier_id'],
         len(po['line_items'] or []), f"{po['total_amount']:.2f}", po['expected_delivery_date']]
        for po in pos
    ]
    return tabulate(rows, headers=['ID', 'PO Number', 'Status', 'Supplier', 'Lines', 'Total', 'Delivery'])


def _print_po(po: Dict):
    print(f"\n{po['po_number']} ({po['status']})")
    print(tabulate(
        [[i['sku'], i['product_name'], i['qty'], f"{i['unit_price']:.2f}", f"{i['total_price']:.2f}"]
         for i in po['line_items'] or []],
        headers=['SKU', 'Product', 'Qty', 'Unit Price', 'Total']
    ))
    print(f"\nTotal amount: {po['total_amount']:.2f}")
    if po.get('ai_reasoning'):
        print(f"Reasoning: {po['ai_reasoning']}")


def init_db(services: Services, args) -> int:
    services.connection.test_connection()
    if args.drop:
        services.connection.drop_all_tables()
    services.connection.create_all_tables()
    print(f"Database tables created at {services.connection.url}")
    return 0


def forecast(services: Services, args) -> int:
    result = asyncio.run(services.forecast_service.generate_forecast(
        args.sku, args.horizon, force_refresh=args.force
    ))
    print(_forecast_table(result))
    print(f"\n{result['explanation']}")
    return 0


def batch_forecast(services: Services, args) -> int:
    results = asyncio.run(services.forecast_service.batch_generate_forecasts(
        args.skus, args.horizon, force_refresh=args.force
    ))
    rows = [
        [r['sku'], 'ok' if r['success'] else 'failed',
         r['forecast']['id'] if r['success'] else '-',
         r['forecast']['summary']['total_predicted'] if r['success'] else r['error']]
        for r in results
    ]
    print(tabulate(rows, headers=['SKU', 'Result', 'Forecast ID', 'Total / Error']))
    return 0 if all(r['success'] for r in results) else 1


def latest(services: Services, args) -> int:
    result = services.forecast_service.get_latest_forecast(args.sku, args.horizon)
    if result is None:
        print(f"No {args.horizon}-day forecast for {args.sku}")
        return 1
    print(_forecast_table(result))
    peak = result['summary'].get('peak_day')
    if peak:
        print(f"\nPeak day: {peak['date']} ({peak['predicted_qty']} units)")
    return 0


def history(services: Services, args) -> int:
    rows = [
        [f['id'], f['generated_at'], f['horizon_days'], f['model_version'],
         (f['summary'] or {}).get('total_predicted')]
        for f in services.forecast_service.get_forecast_history(args.sku, args.limit)
    ]
    print(tabulate(rows, headers=['ID', 'Generated', 'Horizon', 'Model', 'Total']))
    return 0


def accuracy(services: Services, args) -> int:
    result = services.forecast_service.calculate_accuracy(args.forecast_id)
    mape = f"{result['mape']:.2f}%" if result['mape'] is not None else 'n/a'
    print(tabulate(
        [[result['forecast_id'], result['sku'], mape, result['data_points'], result['confidence']]],
        headers=['Forecast', 'SKU', 'MAPE', 'Days compared', 'Confidence']
    ))
    return 0


def reorder(services: Services, args) -> int:
    recommendations = services.inventory_service.get_reorder_recommendations()
    if not recommendations:
        print("No SKUs need reordering")
        return 0
    print(tabulate(
        [[r['sku'], r['name'], r['current_stock'], r['reorder_level'], r['recommended_qty'],
          r['urgency'], r['estimated_days_until_stockout']] for r in recommendations],
        headers=['SKU', 'Name', 'Stock', 'Reorder Level', 'Order Qty', 'Urgency', 'Days Left']
    ))
    return 0


def inventory(services: Services, args) -> int:
    result = services.inventory_service.get_inventory(args.sku, args.location)
    recommendation = result.pop('recommendation')
    print(tabulate(sorted(result.items()), tablefmt='simple'))
    print(f"\nRecommendation: {recommendation}")
    return 0


def adjust_stock(services: Services, args) -> int:
    result = services.inventory_service.adjust_stock(
        args.sku, args.delta, args.change_type,
        reference_id=args.reference, reason=args.reason, changed_by=args.user,
        location=args.location
    )
    print(f"{args.sku}: {result['qty_available']} units available")
    return 0


def set_price(services: Services, args) -> int:
    price = services.supplier_service.set_supplier_price(
        args.supplier_id, args.sku, args.unit_price, args.moq
    )
    print(f"Supplier {price['supplier_id']} price for {price['sku']}: "
          f"{price['unit_price']:.2f} (MOQ {price['moq']})")
    return 0


def po_draft(services: Services, args) -> int:
    po = asyncio.run(services.po_service.generate_draft_po(
        args.skus, args.supplier_id, args.reason, notes=args.notes, created_by=args.user
    ))
    _print_po(po)
    return 0


def po_approve(services: Services, args) -> int:
    _print_po(services.po_service.approve_po(args.po_id, args.user))
    return 0


def po_send(services: Services, args) -> int:
    _print_po(services.po_service.send_po(args.po_id))
    return 0


def po_receive(services: Services, args) -> int:
    _print_po(services.po_service.receive_po(args.po_id, args.user))
    return 0


def po_cancel(services: Services, args) -> int:
    _print_po(services.po_service.cancel_po(args.po_id))
    return 0


def po_list(services: Services, args) -> int:
    pos = services.po_service.list_pos(args.status, args.supplier_id, args.limit, args.offset)
    print(_po_table(pos))
    return 0


def schedule(services: Services, args, config: Config) -> int:
    from demand_replenishment.batch.runtime import ReplenishmentRuntime, run_once

    runtime = ReplenishmentRuntime(services, config.worker_config, config.scheduler_config)
    results = asyncio.run(run_once(runtime))
    _print_json(results)
    return 0 if not results['forecasts_failed'] else 1


def workers(services: Services, args, config: Config) -> int:
    from demand_replenishment.batch.runtime import ReplenishmentRuntime, serve

    runtime = ReplenishmentRuntime(services, config.worker_config, config.scheduler_config)
    asyncio.run(serve(runtime, run_schedule_now=args.now))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Demand forecasting and replenishment')
    parser.add_argument('--config', '-c', help='Path to an INI configuration file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    p = subparsers.add_parser('init-db', help='Create database tables')
    p.add_argument('--drop', action='store_true', help='Drop existing tables first')
    p.set_defaults(func=init_db)

    p = subparsers.add_parser('forecast', help='Generate a forecast for one SKU')
    p.add_argument('sku')
    p.add_argument('--horizon', type=int, default=30, choices=(30, 60, 90))
    p.add_argument('--force', action='store_true', help='Ignore a fresh cached forecast')
    p.set_defaults(func=forecast)

    p = subparsers.add_parser('batch-forecast', help='Generate forecasts for several SKUs')
    p.add_argument('skus', nargs='+')
    p.add_argument('--horizon', type=int, default=30, choices=(30, 60, 90))
    p.add_argument('--force', action='store_true')
    p.set_defaults(func=batch_forecast)

    p = subparsers.add_parser('latest', help='Show the latest forecast for a SKU')
    p.add_argument('sku')
    p.add_argument('--horizon', type=int, default=30, choices=(30, 60, 90))
    p.set_defaults(func=latest)

    p = subparsers.add_parser('history', help='List recent forecasts for a SKU')
    p.add_argument('sku')
    p.add_argument('--limit', type=int, default=10)
    p.set_defaults(func=history)

    p = subparsers.add_parser('accuracy', help='Score a forecast against actual sales')
    p.add_argument('forecast_id', type=int)
    p.set_defaults(func=accuracy)

    p = subparsers.add_parser('reorder', help='List stock-based reorder recommendations')
    p.set_defaults(func=reorder)

    p = subparsers.add_parser('inventory', help='Show stock status for a SKU')
    p.add_argument('sku')
    p.add_argument('--location')
    p.set_defaults(func=inventory)

    p = subparsers.add_parser('adjust-stock', help='Apply a stock delta with an audit entry')
    p.add_argument('sku')
    p.add_argument('delta', type=int)
    p.add_argument('--change-type', default='adjustment',
                   choices=('sale', 'restock', 'adjustment', 'return'))
    p.add_argument('--reference')
    p.add_argument('--reason')
    p.add_argument('--user')
    p.add_argument('--location')
    p.set_defaults(func=adjust_stock)

    p = subparsers.add_parser('set-price', help='Set the current supplier price for a SKU')
    p.add_argument('supplier_id', type=int)
    p.add_argument('sku')
    p.add_argument('unit_price', type=float)
    p.add_argument('--moq', type=int, default=1)
    p.set_defaults(func=set_price)

    p = subparsers.add_parser('po-draft', help='Draft a purchase order')
    p.add_argument('supplier_id', type=int)
    p.add_argument('skus', nargs='+')
    p.add_argument('--reason', default='Replenish low stock')
    p.add_argument('--notes')
    p.add_argument('--user')
    p.set_defaults(func=po_draft)

    for name, handler, text in (
        ('po-approve', po_approve, 'Approve a purchase order'),
        ('po-send', po_send, 'Mark a purchase order as sent'),
        ('po-receive', po_receive, 'Receive a purchase order into inventory'),
        ('po-cancel', po_cancel, 'Cancel a purchase order')
    ):
        p = subparsers.add_parser(name, help=text)
        p.add_argument('po_id', type=int)
        if name in ('po-approve', 'po-receive'):
            p.add_argument('--user', required=(name == 'po-approve'))
        p.set_defaults(func=handler)

    p = subparsers.add_parser('po-list', help='List purchase orders')
    p.add_argument('--status', choices=(
        'draft', 'pending_approval', 'approved', 'sent', 'received', 'cancelled'
    ))
    p.add_argument('--supplier-id', type=int)
    p.add_argument('--limit', type=int, default=50)
    p.add_argument('--offset', type=int, default=0)
    p.set_defaults(func=po_list)

    p = subparsers.add_parser('schedule', help='Run the daily low-stock forecast once')
    p.set_defaults(func=schedule, needs_config=True)

    p = subparsers.add_parser('workers', help='Run the scheduler and workers until stopped')
    p.add_argument('--now', action='store_true', help='Also queue low-stock forecasts immediately')
    p.set_defaults(func=workers, needs_config=True)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command line interface."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, 'func', None):
        parser.print_help()
        return 1

    config = Config(args.config)
    log_config = config.log_config
    if args.verbose:
        log_config['level'] = 'DEBUG'
    log_manager.configure(log_config)

    log = log_manager.app_logger

    try:
        services = build_services(config)
        if getattr(args, 'needs_config', False):
            return args.func(services, args, config)
        return args.func(services, args)
    except ReplenishmentError as e:
        log.error(f"{args.command} failed: {str(e)}")
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        return 1
    except Exception as e:
        log_manager.log_exception('app', e, f"{args.command} failed unexpectedly")
        raise


if __name__ == '__main__':
    sys.exit(main())
