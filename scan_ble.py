from bleak import BleakScanner
import asyncio

from hrvxo.io.polar_bridge import HR_SERVICE_UUID

async def main():
    print("Scanning 8s for heart-rate straps...")
    found = await BleakScanner.discover(timeout=8.0, return_adv=True)
    for address, (d, adv) in found.items():
        uuids = [u.lower() for u in (adv.service_uuids or [])]
        tag = "  [HR]" if HR_SERVICE_UUID in uuids else ""
        print(d.name, ":", address, tag)

asyncio.run(main())
